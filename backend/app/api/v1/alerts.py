"""
FastAPI routes: alert creation, agency alert views and acknowledgment.

Provides endpoints to:
    POST  /api/v1/agencies/{agency_id}/alerts               — create + distribute
    GET   /api/v1/agencies/{agency_id}/alerts               — alerts addressed to agency
    GET   /api/v1/agencies/{agency_id}/alerts/sent          — alerts created by agency
    GET   /api/v1/agencies/{agency_id}/alerts/unread-count  — unread counter
    GET   /api/v1/alerts/{alert_id}                         — single alert
    PATCH /api/v1/alerts/{alert_id}/read                    — acknowledge
    PATCH /api/v1/alerts/{alert_id}/deactivate              — creator-only
    POST  /api/v1/alerts/{alert_id}/redistribute            — re-run fan-out
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.alerts.distribution import redistribute_alert
from backend.app.alerts.models import AlertSeverity, AlertStatus
from backend.app.alerts.store import create_alert, deactivate_alert, get_alert
from backend.app.alerts.tracker import (
    list_for_agency,
    list_sent_by,
    mark_read,
    unread_count,
)
from backend.app.api.schemas import (
    AlertListResponse,
    AlertOut,
    AlertStatusResponse,
    DistributionReportOut,
    UnreadCountResponse,
)
from backend.app.core.database import get_db
from backend.app.core.security import Actor, get_actor

router = APIRouter(prefix="/api/v1", tags=["alerts"])


_CREATE_EXAMPLE = {
    "title": "Flash flood warning",
    "message": "River levels rising; avoid low-lying roads.",
    "severity": "high",
    "coordinates": [80.2707, 13.0827],
    "radius": 10,
    "expiresAt": "2030-01-01T00:00:00Z",
    "recipients": [],
}


# ---------------------------------------------------------------------------
# Agency-scoped endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/agencies/{agency_id}/alerts",
    response_model=AlertOut,
    status_code=201,
    summary="Create an alert",
    description=(
        "Validates every field together, stores the alert, then delivers it "
        "to the explicit recipients and every active agency inside the radius. "
        "Delivery failures do not fail the request."
    ),
)
async def create_agency_alert(
    agency_id: str,
    body: Dict[str, Any] = Body(..., examples=[_CREATE_EXAMPLE]),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    # Validated in the store so unknown recipients join the same error list
    alert = await create_alert(
        db,
        creator_id=agency_id,
        title=body.get("title"),
        message=body.get("message"),
        severity=body.get("severity"),
        coordinates=body.get("coordinates"),
        radius=body.get("radius"),
        expires_at=body.get("expiresAt", body.get("expires_at")),
        recipients=body.get("recipients"),
        actor=actor,
    )
    return AlertOut.from_alert(alert)


@router.get(
    "/agencies/{agency_id}/alerts",
    response_model=AlertListResponse,
    summary="Active alerts addressed to an agency",
)
async def list_agency_alerts(
    agency_id: str,
    severity: Optional[AlertSeverity] = Query(None, description="Filter by severity"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Newest first; explicit and in-radius deliveries alike."""
    alerts = await list_for_agency(db, agency_id, severity=severity, limit=limit)
    return AlertListResponse(
        count=len(alerts),
        alerts=[AlertOut.from_alert(a) for a in alerts],
    )


@router.get(
    "/agencies/{agency_id}/alerts/sent",
    response_model=AlertListResponse,
    summary="Alerts created by an agency",
    description="Members of the agency and elevated roles only.",
)
async def list_agency_sent_alerts(
    agency_id: str,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    alerts = await list_sent_by(db, agency_id, actor, limit=limit)
    return AlertListResponse(
        count=len(alerts),
        alerts=[AlertOut.from_alert(a) for a in alerts],
    )


@router.get(
    "/agencies/{agency_id}/alerts/unread-count",
    response_model=UnreadCountResponse,
    summary="Unread alert count",
)
async def agency_unread_count(agency_id: str, db: AsyncSession = Depends(get_db)):
    count = await unread_count(db, agency_id)
    return UnreadCountResponse(agency_id=agency_id, count=count)


# ---------------------------------------------------------------------------
# Alert-scoped endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/alerts/{alert_id}",
    response_model=AlertOut,
    summary="Get an alert",
)
async def read_alert(alert_id: str, db: AsyncSession = Depends(get_db)):
    alert = await get_alert(db, alert_id)
    return AlertOut.from_alert(alert)


@router.patch(
    "/alerts/{alert_id}/read",
    response_model=AlertOut,
    summary="Mark an alert read",
    description="Records the caller's agency in the alert's read-set. Repeats are no-ops.",
)
async def read_receipt(
    alert_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    alert = await mark_read(db, alert_id, actor.agency_id)
    return AlertOut.from_alert(alert)


@router.patch(
    "/alerts/{alert_id}/deactivate",
    response_model=AlertStatusResponse,
    summary="Deactivate an alert",
    description="Only the creating agency may deactivate. Repeats are no-ops.",
)
async def deactivate(
    alert_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    alert = await deactivate_alert(db, alert_id, actor)
    return AlertStatusResponse(
        alert_id=alert.id,
        status=AlertStatus(alert.status),
        message="Alert deactivated",
    )


@router.post(
    "/alerts/{alert_id}/redistribute",
    response_model=DistributionReportOut,
    summary="Re-run distribution",
    description=(
        "Delivers an active alert again to its recipients and to agencies "
        "now inside its radius. Creator or elevated role only."
    ),
)
async def redistribute(
    alert_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    report = await redistribute_alert(db, alert_id, actor)
    return DistributionReportOut(**report.to_dict())
