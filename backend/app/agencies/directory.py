"""
directory.py — Agency registration, location updates and proximity queries.

Proximity search
================
``find_nearby`` answers "which agencies lie within R km of this point":

    Step 1 — Bounding box around the circle (radius_utils.bounding_box)
    Step 2 — Range query on the indexed (latitude, longitude) columns
    Step 3 — Exact Haversine distance on the surviving candidates

Circles that wrap the antimeridian or touch a pole only constrain the
latitude band in step 2; step 3 still decides membership exactly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.agencies.models import Agency, AgencyType
from backend.app.api.schemas import AgencyCreate, LocationUpdate, validate_payload
from backend.app.core.errors import (
    DependencyUnavailableError,
    ForbiddenError,
    NotFoundError,
)
from backend.app.core.security import Actor
from backend.app.spatial.radius_utils import (
    Coordinate,
    bounding_box,
    is_inside_radius,
)

logger = logging.getLogger(__name__)


@dataclass
class NearbyAgency:
    """An agency matched by a radius query, with its distance from the origin."""
    agency: Agency
    distance_km: float


async def register_agency(
    session: AsyncSession,
    *,
    name: str,
    coordinates: List[float],
    agency_type: str = AgencyType.OTHER.value,
    contact_email: Optional[str] = None,
    contact_phone: Optional[str] = None,
) -> Agency:
    """
    Register a new agency at ``coordinates`` (``[longitude, latitude]``).

    Raises ValidationError listing every invalid field.
    """
    payload = validate_payload(AgencyCreate, {
        "name": name,
        "agency_type": agency_type,
        "coordinates": coordinates,
        "contact_email": contact_email,
        "contact_phone": contact_phone,
    })
    longitude, latitude = payload.coordinates
    agency = Agency(
        name=payload.name,
        agency_type=payload.agency_type.value,
        longitude=longitude,
        latitude=latitude,
        contact_email=payload.contact_email,
        contact_phone=payload.contact_phone,
    )
    session.add(agency)
    await session.commit()

    logger.info(
        "Registered agency %s (%s) at [%.5f, %.5f]",
        agency.id, agency.name, longitude, latitude,
        extra={"agency_id": agency.id},
    )
    return agency


async def get_agency(session: AsyncSession, agency_id: str) -> Agency:
    """Fetch an agency or raise NotFoundError."""
    agency = await session.get(Agency, agency_id)
    if agency is None:
        raise NotFoundError("Agency", agency_id=agency_id)
    return agency


async def get_agencies(session: AsyncSession, agency_ids: Iterable[str]) -> Dict[str, Agency]:
    """Fetch the given agencies keyed by id; unknown ids are simply absent."""
    ids = list(agency_ids)
    if not ids:
        return {}
    result = await session.scalars(select(Agency).where(Agency.id.in_(ids)))
    return {agency.id: agency for agency in result}


async def update_location(
    session: AsyncSession,
    agency_id: str,
    coordinates: List[float],
    actor: Actor,
) -> Agency:
    """
    Move an agency. Only its own members or elevated roles may do so.

    Coordinates are bounds-checked only.
    """
    payload = validate_payload(LocationUpdate, {"coordinates": coordinates})
    agency = await get_agency(session, agency_id)
    if not actor.can_act_for(agency_id):
        raise ForbiddenError(
            "Not authorized to update this agency's location",
            agency_id=agency_id,
        )

    agency.longitude, agency.latitude = payload.coordinates
    await session.commit()

    logger.info(
        "Agency %s moved to [%.5f, %.5f] by %s",
        agency_id, agency.longitude, agency.latitude, actor.agency_id,
        extra={"agency_id": agency_id},
    )
    return agency


async def find_nearby(
    session: AsyncSession,
    origin: Coordinate,
    radius_km: float,
    *,
    exclude: Optional[Iterable[str]] = None,
    include_inactive: bool = False,
) -> List[NearbyAgency]:
    """
    Agencies within ``radius_km`` great-circle kilometers of ``origin``.

    Parameters
    ----------
    origin : Coordinate
    radius_km : float
        Must be positive.
    exclude : iterable of str, optional
        Agency ids to leave out (e.g. an alert's creator).
    include_inactive : bool
        Deactivated agencies are skipped unless True.

    Returns
    -------
    list of NearbyAgency, nearest first.

    Raises
    ------
    DependencyUnavailableError
        If the directory query fails.
    """
    box = bounding_box(origin, radius_km)

    stmt = select(Agency).where(Agency.latitude.between(box.min_lat, box.max_lat))
    if box.constrains_longitude:
        stmt = stmt.where(Agency.longitude.between(box.min_lon, box.max_lon))
    if not include_inactive:
        stmt = stmt.where(Agency.active.is_(True))
    excluded = list(exclude or ())
    if excluded:
        stmt = stmt.where(Agency.id.not_in(excluded))

    try:
        candidates = (await session.scalars(stmt)).all()
    except SQLAlchemyError as exc:
        raise DependencyUnavailableError("agency_directory", str(exc)) from exc

    matched: List[NearbyAgency] = []
    for agency in candidates:
        inside, dist = is_inside_radius(
            origin, Coordinate(agency.latitude, agency.longitude), radius_km,
        )
        if inside:
            matched.append(NearbyAgency(agency=agency, distance_km=dist))

    matched.sort(key=lambda n: n.distance_km)

    logger.debug(
        "Proximity query: %d of %d candidates within %.1f km of [%.5f, %.5f]",
        len(matched), len(candidates), radius_km,
        origin.longitude, origin.latitude,
    )
    return matched
