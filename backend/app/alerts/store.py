"""
store.py — Alert persistence: create, read, deactivate, purge.

═══════════════════════════════════════════════════════════════════════════
CREATE PIPELINE
═══════════════════════════════════════════════════════════════════════════

    creator exists? ──no──▶ NotFoundError
         │
         ▼
    validate every field (AlertCreate) + recipients are known agencies
         │                         └── any violation ──▶ one ValidationError
         ▼
    INSERT alert + explicit recipients, COMMIT
         │
         ▼
    distribution.distribute_alert   (failures reported, never raised)
         │
         ▼
    re-read with creator / recipients / read-set

Each mutation commits on its own; there is no transaction spanning the
alert write and its fan-out.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.agencies.directory import get_agencies, get_agency
from backend.app.alerts.distribution import distribute_alert
from backend.app.alerts.models import (
    AgencyAlert,
    Alert,
    AlertRead,
    AlertRecipient,
    AlertStatus,
)
from backend.app.alerts.queries import fetch_alert, utcnow
from backend.app.api.schemas import AlertCreate
from backend.app.core.errors import (
    DependencyUnavailableError,
    ForbiddenError,
    ValidationError,
    itemise_pydantic_errors,
)
from backend.app.core.security import Actor

logger = logging.getLogger(__name__)


def _raw_recipient_ids(recipients: Any) -> List[str]:
    # Used when the payload as a whole failed validation
    if not isinstance(recipients, (list, tuple)):
        return []
    ids: List[str] = []
    for value in recipients:
        if isinstance(value, str) and value.strip() and value.strip() not in ids:
            ids.append(value.strip())
    return ids


async def create_alert(
    session: AsyncSession,
    *,
    creator_id: str,
    title: Any,
    message: Any,
    severity: Any,
    coordinates: Any,
    radius: Any,
    expires_at: Any,
    recipients: Optional[Sequence[str]] = None,
    actor: Optional[Actor] = None,
    distribute: bool = True,
) -> Alert:
    """
    Validate and store a new alert, then distribute it.

    Raises
    ------
    NotFoundError
        The creator agency does not exist.
    ForbiddenError
        ``actor`` is given and cannot act for the creator agency.
    ValidationError
        One or more fields are invalid; ``errors`` lists all of them.
    """
    creator = await get_agency(session, creator_id)
    if actor is not None and not actor.can_act_for(creator_id):
        raise ForbiddenError(
            "Not authorized to create alerts for this agency",
            agency_id=creator_id,
        )

    # None means "not supplied", so pydantic reports it as a missing field
    fields = {
        "title": title,
        "message": message,
        "severity": severity,
        "coordinates": coordinates,
        "radius": radius,
        "expires_at": expires_at,
        "recipients": recipients if recipients is not None else [],
    }
    errors: List[Dict[str, str]] = []
    payload: Optional[AlertCreate] = None
    try:
        payload = AlertCreate.model_validate(
            {key: value for key, value in fields.items() if value is not None}
        )
    except PydanticValidationError as exc:
        errors.extend(itemise_pydantic_errors(exc.errors()))

    recipient_ids = payload.recipients if payload else _raw_recipient_ids(recipients)
    if recipient_ids:
        known = await get_agencies(session, recipient_ids)
        unknown = [agency_id for agency_id in recipient_ids if agency_id not in known]
        if unknown:
            errors.append({
                "field": "recipients",
                "message": f"Unknown agencies: {', '.join(unknown)}",
            })

    if errors or payload is None:
        raise ValidationError(errors)

    longitude, latitude = payload.coordinates
    alert = Alert(
        id=uuid.uuid4().hex,
        title=payload.title,
        message=payload.message,
        severity=payload.severity.value,
        longitude=longitude,
        latitude=latitude,
        radius_km=payload.radius,
        created_by_id=creator.id,
        status=AlertStatus.ACTIVE.value,
        expires_at=payload.expires_at,
    )
    session.add(alert)
    session.add_all(
        AlertRecipient(alert_id=alert.id, agency_id=agency_id)
        for agency_id in payload.recipients
    )
    await session.commit()

    logger.info(
        "Alert %s created by %s: %s [%s] radius %.1f km, %d explicit recipients",
        alert.id, creator.id, alert.title, alert.severity, alert.radius_km,
        len(payload.recipients),
        extra={"alert_id": alert.id, "agency_id": creator.id},
    )

    alert_id = alert.id
    if distribute:
        await distribute_alert(session, alert)
    return await fetch_alert(session, alert_id)


async def get_alert(session: AsyncSession, alert_id: str) -> Alert:
    """Fetch an alert; expired or unknown ids raise NotFoundError."""
    return await fetch_alert(session, alert_id)


async def deactivate_alert(session: AsyncSession, alert_id: str, actor: Actor) -> Alert:
    """
    Set an alert inactive. Creator only; repeating it is a no-op.

    The conditional UPDATE means concurrent deactivations land once.
    """
    alert = await fetch_alert(session, alert_id)
    if alert.created_by_id != actor.agency_id:
        raise ForbiddenError(
            "Only the creating agency can deactivate this alert",
            alert_id=alert_id,
        )

    result = await session.execute(
        update(Alert)
        .where(Alert.id == alert_id, Alert.status == AlertStatus.ACTIVE.value)
        .values(status=AlertStatus.INACTIVE.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    if result.rowcount:
        logger.info(
            "Alert %s deactivated by %s", alert_id, actor.agency_id,
            extra={"alert_id": alert_id, "agency_id": actor.agency_id},
        )
    return await fetch_alert(session, alert_id)


async def purge_expired(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Delete every alert with ``expires_at <= now`` and its child rows.

    Returns the number of alerts removed.
    """
    cutoff = now or utcnow()
    expired_ids = select(Alert.id).where(Alert.expires_at <= cutoff)

    try:
        for child in (AlertRead, AlertRecipient, AgencyAlert):
            await session.execute(
                delete(child)
                .where(child.alert_id.in_(expired_ids))
                .execution_options(synchronize_session=False)
            )
        result = await session.execute(
            delete(Alert)
            .where(Alert.expires_at <= cutoff)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise DependencyUnavailableError("alert_store", str(exc)) from exc

    purged = result.rowcount or 0
    if purged:
        logger.info(
            "Purged %d expired alerts", purged,
            extra={"purged_count": purged},
        )
    return purged
