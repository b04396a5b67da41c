"""
Pydantic schemas for the agency and alert APIs.

Separated from the route handlers so they are reusable across the
codebase: the service layer validates direct calls through the same
models, so HTTP and in-process callers get identical itemised errors.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional, Type, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from backend.app.agencies.models import Agency, AgencyType
from backend.app.alerts.models import Alert, AlertSeverity, AlertStatus
from backend.app.core.errors import ValidationError, itemise_pydantic_errors
from backend.app.spatial.radius_utils import LATITUDE_RANGE, LONGITUDE_RANGE


# ---------------------------------------------------------------------------
# Shared validators
# ---------------------------------------------------------------------------

def validate_coordinates(value: List[float]) -> List[float]:
    """
    Check a ``[longitude, latitude]`` pair, reporting both axes at once.
    """
    if len(value) != 2:
        raise ValueError("Coordinates must be [longitude, latitude]")
    longitude, latitude = value
    problems = []
    if not math.isfinite(longitude) or not (
        LONGITUDE_RANGE[0] <= longitude <= LONGITUDE_RANGE[1]
    ):
        problems.append(f"longitude must be between -180 and 180 (got {longitude})")
    if not math.isfinite(latitude) or not (
        LATITUDE_RANGE[0] <= latitude <= LATITUDE_RANGE[1]
    ):
        problems.append(f"latitude must be between -90 and 90 (got {latitude})")
    if problems:
        raise ValueError("Invalid coordinates: " + "; ".join(problems))
    return [float(longitude), float(latitude)]


Coordinates = Annotated[List[float], AfterValidator(validate_coordinates)]

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_payload(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """Validate ``data`` against ``model``, raising an itemised ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(itemise_pydantic_errors(exc.errors())) from exc


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class AgencyCreate(BaseModel):
    """Request body for POST /api/v1/agencies."""
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200, examples=["Metro Fire Dept."])
    agency_type: AgencyType = Field(
        AgencyType.OTHER, alias="type", examples=["Fire Department"],
    )
    coordinates: Coordinates = Field(
        ..., description="[longitude, latitude]", examples=[[-122.42, 37.77]],
    )
    contact_email: Optional[str] = Field(None, alias="contactEmail", max_length=320)
    contact_phone: Optional[str] = Field(None, alias="contactPhone", max_length=40)


class LocationUpdate(BaseModel):
    """Request body for PATCH /api/v1/agencies/{id}/location."""
    coordinates: Coordinates = Field(..., description="[longitude, latitude]")


class AlertCreate(BaseModel):
    """
    Request body for POST /api/v1/agencies/{agency_id}/alerts.

    Every violated field is reported together.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=200, examples=["Flash flood warning"])
    message: str = Field(..., min_length=1, examples=["River levels rising; avoid low roads."])
    severity: AlertSeverity = Field(..., examples=["high"])
    coordinates: Coordinates = Field(
        ..., description="Alert origin as [longitude, latitude]", examples=[[0.0, 0.0]],
    )
    radius: float = Field(..., gt=0, description="Radius in kilometers", examples=[10.0])
    expires_at: datetime = Field(..., alias="expiresAt")
    recipients: List[str] = Field(
        default_factory=list,
        description="Agency ids to address in addition to the radius",
    )

    @field_validator("radius")
    @classmethod
    def _finite_radius(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("Radius must be a finite number")
        return value

    @field_validator("expires_at")
    @classmethod
    def _future_expiry(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value <= datetime.now(timezone.utc):
            raise ValueError("Expiry must be in the future")
        return value

    @field_validator("recipients")
    @classmethod
    def _dedupe_recipients(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for agency_id in value:
            agency_id = agency_id.strip()
            if agency_id and agency_id not in seen:
                seen.append(agency_id)
        return seen


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class AgencyRef(BaseModel):
    id: str
    name: str


class AgencyOut(BaseModel):
    id: str
    name: str
    agency_type: str
    coordinates: List[float]
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_agency(cls, agency: Agency) -> "AgencyOut":
        return cls(
            id=agency.id,
            name=agency.name,
            agency_type=agency.agency_type,
            coordinates=agency.coordinates,
            contact_email=agency.contact_email,
            contact_phone=agency.contact_phone,
            active=agency.active,
            created_at=agency.created_at,
            updated_at=agency.updated_at,
        )


class NearbyAgencyOut(AgencyOut):
    distance_km: float = Field(..., description="Great-circle distance in km")


class NearbyAgenciesResponse(BaseModel):
    origin: List[float]
    radius_km: float
    count: int
    agencies: List[NearbyAgencyOut]


class AlertOut(BaseModel):
    """A single alert, with creator and recipients resolved where loaded."""
    id: str
    title: str
    message: str
    severity: AlertSeverity
    coordinates: List[float]
    radius: float
    status: AlertStatus
    created_by: AgencyRef
    recipients: List[AgencyRef] = Field(default_factory=list)
    read_by: List[str] = Field(default_factory=list)
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertOut":
        """Build from an alert loaded with creator, recipients and reads."""
        return cls(
            id=alert.id,
            title=alert.title,
            message=alert.message,
            severity=AlertSeverity(alert.severity),
            coordinates=alert.coordinates,
            radius=alert.radius_km,
            status=AlertStatus(alert.status),
            created_by=AgencyRef(id=alert.created_by.id, name=alert.created_by.name),
            recipients=[
                AgencyRef(id=r.agency.id, name=r.agency.name)
                for r in alert.recipients
            ],
            read_by=[r.agency_id for r in alert.reads],
            expires_at=alert.expires_at,
            created_at=alert.created_at,
            updated_at=alert.updated_at,
        )


class AlertListResponse(BaseModel):
    count: int
    alerts: List[AlertOut]


class UnreadCountResponse(BaseModel):
    agency_id: str
    count: int


class DistributionReportOut(BaseModel):
    alert_id: str
    explicit_count: int
    proximity_count: int
    recipient_count: int
    succeeded: bool
    error: Optional[str] = None


class AlertStatusResponse(BaseModel):
    alert_id: str
    status: AlertStatus
    message: str
