"""
models.py — Alert entities and their set-like child tables.

Defines:
    • AlertSeverity — low / medium / high / critical
    • AlertStatus   — active → inactive lifecycle
    • DeliveryVia   — how an agency came to see an alert
    • Alert          — the alert record (origin point, radius, expiry)
    • AlertRecipient — explicit recipient list entry
    • AlertRead      — read-set entry (one per agency)
    • AgencyAlert    — an agency's visible-alert collection (fan-out)

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    active(unread) ──mark_read(agency)──▶ active(read by agency)
         │                                      │
         └────────deactivate(creator)───────────┴──▶ inactive  (terminal for writes)

    any state ──expires_at reached──▶ purged (unobservable)

Every read-set, recipient and visibility row is keyed by a unique
(alert, agency) pair, so "add to set" is a single insert-or-ignore and
concurrent writers can never create duplicates or lose each other's rows.

═══════════════════════════════════════════════════════════════════════════
ADDRESSING
═══════════════════════════════════════════════════════════════════════════

An agency is addressed by an alert when it is in ``alert_recipients``
(explicit) OR in ``agency_alerts`` (fan-out). Queries test each with an
EXISTS, so the alert row itself is matched at most once per agency.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import (
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base, UTCDateTime

if TYPE_CHECKING:
    from backend.app.agencies.models import Agency


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertSeverity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE   = "active"
    INACTIVE = "inactive"


class DeliveryVia(str, Enum):
    EXPLICIT  = "explicit"   # named in the alert's recipient list
    PROXIMITY = "proximity"  # located inside the alert radius


# ═══════════════════════════════════════════════════════════════════════════
# Entities
# ═══════════════════════════════════════════════════════════════════════════

class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_origin", "latitude", "longitude"),
        Index("ix_alerts_expires_at", "expires_at"),
        Index("ix_alerts_created_by", "created_by_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_km: Mapped[float] = mapped_column(Float, nullable=False)
    created_by_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("agencies.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AlertStatus.ACTIVE.value,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_now, onupdate=_now,
    )

    created_by: Mapped["Agency"] = relationship(lazy="raise")
    recipients: Mapped[List["AlertRecipient"]] = relationship(
        lazy="raise", cascade="all, delete-orphan", passive_deletes=True,
    )
    reads: Mapped[List["AlertRead"]] = relationship(
        lazy="raise", cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def coordinates(self) -> list:
        """``[longitude, latitude]``"""
        return [self.longitude, self.latitude]

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE.value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or _now())

    def __repr__(self) -> str:
        return f"<Alert {self.id} {self.severity} {self.status}>"


class AlertRecipient(Base):
    __tablename__ = "alert_recipients"
    __table_args__ = (
        UniqueConstraint("alert_id", "agency_id", name="uq_alert_recipient"),
        Index("ix_alert_recipients_agency", "agency_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False,
    )
    agency_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False,
    )

    agency: Mapped["Agency"] = relationship(lazy="raise")


class AlertRead(Base):
    __tablename__ = "alert_reads"
    __table_args__ = (
        UniqueConstraint("alert_id", "agency_id", name="uq_alert_read"),
        Index("ix_alert_reads_agency", "agency_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False,
    )
    agency_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False,
    )
    read_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_now,
    )


class AgencyAlert(Base):
    __tablename__ = "agency_alerts"
    __table_args__ = (
        UniqueConstraint("agency_id", "alert_id", name="uq_agency_alert"),
        Index("ix_agency_alerts_alert", "alert_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    agency_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False,
    )
    alert_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False,
    )
    via: Mapped[str] = mapped_column(String(16), nullable=False)
    delivered_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_now,
    )
