"""
tracker.py — Per-agency read state and the agency-facing alert views.

An agency "sees" an alert when it is an explicit recipient or was reached
by fan-out (``queries.addressed_to``). Reads are recorded in
``alert_reads`` with an insert-or-ignore on the unique (alert, agency)
pair: two agencies acknowledging at once are both kept, and repeating an
acknowledgment changes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.agencies.directory import get_agency
from backend.app.alerts.models import Alert, AlertRead, AlertSeverity
from backend.app.alerts.queries import (
    FULL_LOAD,
    addressed_to,
    fetch_alert,
    is_active,
    read_by,
    unexpired,
    utcnow,
)
from backend.app.core.database import insert_ignore
from backend.app.core.errors import ForbiddenError, NotFoundError
from backend.app.core.security import Actor

logger = logging.getLogger(__name__)


async def mark_read(session: AsyncSession, alert_id: str, agency_id: str) -> Alert:
    """
    Record that ``agency_id`` has read ``alert_id``.

    Deactivation does not close the read-set: acknowledging an inactive
    alert is recorded like any other.

    Raises
    ------
    NotFoundError
        Unknown or expired alert, or unknown agency.
    """
    await fetch_alert(session, alert_id)
    await get_agency(session, agency_id)

    try:
        await insert_ignore(
            session,
            AlertRead.__table__,
            [{"alert_id": alert_id, "agency_id": agency_id, "read_at": utcnow()}],
            ("alert_id", "agency_id"),
        )
        await session.commit()
    except IntegrityError as exc:
        # Purged between the lookup and the insert
        await session.rollback()
        raise NotFoundError("Alert", alert_id=alert_id) from exc

    logger.info(
        "Alert %s read by %s", alert_id, agency_id,
        extra={"alert_id": alert_id, "agency_id": agency_id},
    )
    return await fetch_alert(session, alert_id)


async def unread_count(
    session: AsyncSession,
    agency_id: str,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Active, unexpired alerts addressed to the agency that it has not read."""
    stmt = (
        select(func.count())
        .select_from(Alert)
        .where(
            is_active(),
            unexpired(now),
            addressed_to(agency_id),
            ~read_by(agency_id),
        )
    )
    return int(await session.scalar(stmt) or 0)


async def list_for_agency(
    session: AsyncSession,
    agency_id: str,
    *,
    severity: Optional[AlertSeverity] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Alert]:
    """Active alerts addressed to the agency, newest first (all unless ``limit``)."""
    stmt = (
        select(Alert)
        .options(*FULL_LOAD)
        .where(is_active(), unexpired(now), addressed_to(agency_id))
        .order_by(Alert.created_at.desc(), Alert.id.desc())
        .execution_options(populate_existing=True)
    )
    if severity is not None:
        stmt = stmt.where(Alert.severity == AlertSeverity(severity).value)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.scalars(stmt)).all())


async def list_sent_by(
    session: AsyncSession,
    agency_id: str,
    actor: Actor,
    *,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Alert]:
    """
    Every alert created by ``agency_id`` (active and inactive), newest
    first. Only ``limit`` truncates the list.

    Raises ForbiddenError unless the actor belongs to the agency or holds
    an elevated role.
    """
    if not actor.can_act_for(agency_id):
        raise ForbiddenError(
            "Not authorized to view alerts sent by this agency",
            agency_id=agency_id,
        )
    stmt = (
        select(Alert)
        .options(*FULL_LOAD)
        .where(Alert.created_by_id == agency_id, unexpired(now))
        .order_by(Alert.created_at.desc(), Alert.id.desc())
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.scalars(stmt)).all())
