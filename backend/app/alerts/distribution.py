"""
distribution.py — Resolve an alert's recipients and fan its visibility out.

═══════════════════════════════════════════════════════════════════════════
DISTRIBUTION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  Alert committed    │  (store.create_alert)
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Resolve         │  explicit = alert_recipients rows
    │     recipients      │  proximity = directory.find_nearby(origin, radius)
    │                     │              minus the creator
    └─────────┬───────────┘
              │  union as a set: each agency once
              ▼
    ┌─────────────────────┐
    │  2. Fan out         │  one agency_alerts row per agency,
    │                     │  INSERT ... ON CONFLICT DO NOTHING
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Report          │  counts + success flag, logged
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
PARTIAL-FAILURE POLICY
═══════════════════════════════════════════════════════════════════════════

The alert is already durable when distribution starts. A failure in the
proximity query or in the fan-out write is logged and recorded on the
report, never raised: alert creation still succeeds. Fan-out is
idempotent, so ``redistribute_alert`` can re-run it later. Explicit
recipients see the alert regardless, because readers also match
``alert_recipients`` directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.agencies.directory import find_nearby
from backend.app.alerts.models import (
    AgencyAlert,
    Alert,
    AlertRecipient,
    DeliveryVia,
)
from backend.app.alerts.queries import fetch_alert
from backend.app.core.database import insert_ignore
from backend.app.core.errors import DependencyUnavailableError, ForbiddenError
from backend.app.core.security import Actor
from backend.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)


@dataclass
class RecipientSet:
    """Agencies addressed by an alert, split by how they were reached."""
    explicit: Set[str] = field(default_factory=set)
    proximity: Set[str] = field(default_factory=set)

    @property
    def all_ids(self) -> Set[str]:
        return self.explicit | self.proximity

    def via(self, agency_id: str) -> DeliveryVia:
        # Explicit addressing wins when an agency is reached both ways
        if agency_id in self.explicit:
            return DeliveryVia.EXPLICIT
        return DeliveryVia.PROXIMITY


@dataclass
class DistributionReport:
    """Outcome of one distribution run."""
    alert_id: str
    explicit_count: int = 0
    proximity_count: int = 0
    recipient_count: int = 0
    succeeded: bool = True
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "explicit_count": self.explicit_count,
            "proximity_count": self.proximity_count,
            "recipient_count": self.recipient_count,
            "succeeded": self.succeeded,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


async def resolve_recipients(session: AsyncSession, alert: Alert) -> RecipientSet:
    """
    Explicit recipients ∪ active agencies inside the alert radius.

    The creator is never a proximity match.

    Raises
    ------
    DependencyUnavailableError
        If either lookup fails.
    """
    try:
        explicit = set(
            await session.scalars(
                select(AlertRecipient.agency_id).where(
                    AlertRecipient.alert_id == alert.id
                )
            )
        )
    except SQLAlchemyError as exc:
        raise DependencyUnavailableError("alert_store", str(exc)) from exc

    nearby = await find_nearby(
        session,
        Coordinate.from_lon_lat(alert.coordinates),
        alert.radius_km,
        exclude=[alert.created_by_id],
    )
    return RecipientSet(
        explicit=explicit,
        proximity={match.agency.id for match in nearby},
    )


async def fan_out(session: AsyncSession, alert: Alert, recipients: RecipientSet) -> int:
    """
    Add ``alert`` to every recipient's visible-alert collection.

    Idempotent: rows that already exist are skipped. Returns the number of
    agencies targeted.

    Raises
    ------
    DependencyUnavailableError
        If the write fails; nothing from this call is kept.
    """
    delivered_at = datetime.now(timezone.utc)
    rows = [
        {
            "agency_id": agency_id,
            "alert_id": alert.id,
            "via": recipients.via(agency_id).value,
            "delivered_at": delivered_at,
        }
        for agency_id in sorted(recipients.all_ids)
    ]
    try:
        await insert_ignore(session, AgencyAlert.__table__, rows, ("agency_id", "alert_id"))
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise DependencyUnavailableError("fan_out", str(exc)) from exc
    return len(rows)


async def distribute_alert(session: AsyncSession, alert: Alert) -> DistributionReport:
    """
    Resolve recipients and fan the alert out; never raises.

    Returns
    -------
    DistributionReport
        ``succeeded`` is False (with ``error`` set) when the proximity
        query or the fan-out write failed for any reason.
    """
    # A rollback expires ORM state; keep plain copies for logging
    alert_id, radius_km = alert.id, alert.radius_km
    report = DistributionReport(alert_id=alert_id)

    try:
        recipients = await resolve_recipients(session, alert)
        report.explicit_count = len(recipients.explicit)
        report.proximity_count = len(recipients.proximity)
        report.recipient_count = await fan_out(session, alert, recipients)
    except DependencyUnavailableError as exc:
        await session.rollback()
        report.succeeded = False
        report.error = exc.message
        logger.error(
            "Distribution of alert %s failed, alert kept without full fan-out: %s",
            alert_id, exc.message,
            extra={"alert_id": alert_id},
        )
    except Exception as exc:
        await session.rollback()
        report.succeeded = False
        report.error = f"{type(exc).__name__}: {exc}"
        logger.exception(
            "Distribution of alert %s failed unexpectedly, alert kept without full fan-out",
            alert_id,
            extra={"alert_id": alert_id},
        )

    report.completed_at = datetime.now(timezone.utc)

    if report.succeeded:
        logger.info(
            "Alert %s distributed to %d agencies (%d explicit, %d in radius %.1f km)",
            alert_id, report.recipient_count,
            report.explicit_count, report.proximity_count, radius_km,
            extra={"alert_id": alert_id, "recipient_count": report.recipient_count},
        )
    return report


async def redistribute_alert(
    session: AsyncSession,
    alert_id: str,
    actor: Actor,
) -> DistributionReport:
    """
    Re-run distribution for an active alert (creator or elevated role only).

    Agencies that moved into the radius since creation are picked up;
    existing visibility rows are left as they are.
    """
    alert = await fetch_alert(session, alert_id)
    if alert.created_by_id != actor.agency_id and not actor.is_elevated:
        raise ForbiddenError(
            "Not authorized to redistribute this alert", alert_id=alert_id,
        )
    if not alert.is_active:
        raise ForbiddenError(
            "Inactive alerts cannot be redistributed", alert_id=alert_id,
        )
    return await distribute_alert(session, alert)
