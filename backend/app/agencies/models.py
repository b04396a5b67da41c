"""
models.py — Agency ORM entity.

An agency is the unit of identity and location: alerts are created by,
addressed to, and acknowledged by agencies. Its point location is stored as
two plain float columns with a composite index; proximity queries use that
index as a bounding-box range filter before exact Haversine distance.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base, UTCDateTime


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AgencyType(str, Enum):
    FIRE_DEPARTMENT = "Fire Department"
    HOSPITAL        = "Hospital"
    POLICE          = "Police"
    NGO             = "NGO"
    GOVERNMENT      = "Government"
    MILITARY        = "Military"
    OTHER           = "Other"


class Agency(Base):
    __tablename__ = "agencies"
    __table_args__ = (
        Index("ix_agencies_location", "latitude", "longitude"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    agency_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AgencyType.OTHER.value,
    )
    contact_email: Mapped[Optional[str]] = mapped_column(String(320))
    contact_phone: Mapped[Optional[str]] = mapped_column(String(40))
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_now, onupdate=_now,
    )

    @property
    def coordinates(self) -> list:
        """``[longitude, latitude]``"""
        return [self.longitude, self.latitude]

    def __repr__(self) -> str:
        return f"<Agency {self.id} {self.name!r}>"
