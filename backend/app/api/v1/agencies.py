"""
FastAPI routes: agency directory.

Provides endpoints to:
    POST  /api/v1/agencies                   — register an agency
    GET   /api/v1/agencies/nearby            — radius query
    GET   /api/v1/agencies/{agency_id}       — single agency
    PATCH /api/v1/agencies/{agency_id}/location
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.agencies.directory import (
    find_nearby,
    get_agency,
    register_agency,
    update_location,
)
from backend.app.api.schemas import (
    AgencyCreate,
    AgencyOut,
    LocationUpdate,
    NearbyAgenciesResponse,
    NearbyAgencyOut,
)
from backend.app.core.database import get_db
from backend.app.core.security import Actor, get_actor
from backend.app.spatial.radius_utils import Coordinate

router = APIRouter(prefix="/api/v1/agencies", tags=["agencies"])


@router.post(
    "",
    response_model=AgencyOut,
    status_code=201,
    summary="Register an agency",
)
async def create_agency(request: AgencyCreate, db: AsyncSession = Depends(get_db)):
    agency = await register_agency(
        db,
        name=request.name,
        coordinates=request.coordinates,
        agency_type=request.agency_type.value,
        contact_email=request.contact_email,
        contact_phone=request.contact_phone,
    )
    return AgencyOut.from_agency(agency)


# Declared before /{agency_id} so "nearby" is not taken for an id
@router.get(
    "/nearby",
    response_model=NearbyAgenciesResponse,
    summary="Agencies within a radius",
    description="Active agencies within `radius_km` great-circle km, nearest first.",
)
async def nearby_agencies(
    longitude: float = Query(..., ge=-180.0, le=180.0, examples=[80.2707]),
    latitude: float = Query(..., ge=-90.0, le=90.0, examples=[13.0827]),
    radius_km: float = Query(..., gt=0, le=20_000.0, examples=[10.0]),
    db: AsyncSession = Depends(get_db),
):
    origin = Coordinate(latitude=latitude, longitude=longitude)
    matches = await find_nearby(db, origin, radius_km)
    return NearbyAgenciesResponse(
        origin=origin.to_lon_lat(),
        radius_km=radius_km,
        count=len(matches),
        agencies=[
            NearbyAgencyOut(
                **AgencyOut.from_agency(m.agency).model_dump(),
                distance_km=m.distance_km,
            )
            for m in matches
        ],
    )


@router.get("/{agency_id}", response_model=AgencyOut, summary="Get an agency")
async def read_agency(agency_id: str, db: AsyncSession = Depends(get_db)):
    agency = await get_agency(db, agency_id)
    return AgencyOut.from_agency(agency)


@router.patch(
    "/{agency_id}/location",
    response_model=AgencyOut,
    summary="Move an agency",
    description="Agency members or elevated roles only. Coordinates are `[longitude, latitude]`.",
)
async def move_agency(
    agency_id: str,
    request: LocationUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    agency = await update_location(db, agency_id, request.coordinates, actor)
    return AgencyOut.from_agency(agency)
