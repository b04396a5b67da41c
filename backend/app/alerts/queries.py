"""
queries.py — Query building blocks shared by the store, distribution and
tracker modules.

Expiry is enforced here as a store-level filter: every read goes through
``unexpired()``, so an alert past its ``expires_at`` is never returned
even if the reaper has not purged it yet.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.app.alerts.models import (
    AgencyAlert,
    Alert,
    AlertRead,
    AlertRecipient,
    AlertStatus,
)
from backend.app.core.errors import NotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def unexpired(now: Optional[datetime] = None):
    """Alerts whose expiry is still in the future."""
    return Alert.expires_at > (now or utcnow())


def is_active():
    return Alert.status == AlertStatus.ACTIVE.value


def addressed_to(agency_id: str):
    """
    Alerts addressed to an agency, explicitly or through fan-out.

    Two EXISTS tests OR-ed together: an agency listed in both places still
    matches the alert row exactly once.
    """
    explicit = exists().where(
        AlertRecipient.alert_id == Alert.id,
        AlertRecipient.agency_id == agency_id,
    )
    fanned_out = exists().where(
        AgencyAlert.alert_id == Alert.id,
        AgencyAlert.agency_id == agency_id,
    )
    return or_(explicit, fanned_out)


def read_by(agency_id: str):
    return exists().where(
        and_(AlertRead.alert_id == Alert.id, AlertRead.agency_id == agency_id)
    )


# Creator, recipients (with their agencies) and read-set
FULL_LOAD = (
    selectinload(Alert.created_by),
    selectinload(Alert.recipients).selectinload(AlertRecipient.agency),
    selectinload(Alert.reads),
)


async def fetch_alert(
    session: AsyncSession,
    alert_id: str,
    *,
    now: Optional[datetime] = None,
) -> Alert:
    """Load an unexpired alert with its relations, or raise NotFoundError."""
    stmt = (
        select(Alert)
        .options(*FULL_LOAD)
        .where(Alert.id == alert_id, unexpired(now))
        .execution_options(populate_existing=True)
    )
    alert = (await session.scalars(stmt)).one_or_none()
    if alert is None:
        raise NotFoundError("Alert", alert_id=alert_id)
    return alert
