"""
Actor identity for request handling.

Authentication happens upstream (gateway / session service); it forwards
the acting agency and the user's role as request headers. This module turns
those headers into an explicit ``Actor`` value that routes pass into every
service call, so no service reads ambient "current user" state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import APIKeyHeader

from backend.app.core.config import settings
from backend.app.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)

agency_header = APIKeyHeader(name=settings.ACTOR_AGENCY_HEADER, auto_error=False)
role_header = APIKeyHeader(name=settings.ACTOR_ROLE_HEADER, auto_error=False)


@dataclass(frozen=True)
class Actor:
    """The agency (and role) on whose behalf an operation runs."""
    agency_id: str
    role: str = "member"

    @property
    def is_elevated(self) -> bool:
        return self.role in settings.ELEVATED_ROLES

    def can_act_for(self, agency_id: str) -> bool:
        """True for members of ``agency_id`` and for elevated roles."""
        return self.agency_id == agency_id or self.is_elevated


async def get_actor(
    agency_id: Optional[str] = Depends(agency_header),
    role: Optional[str] = Depends(role_header),
) -> Actor:
    """
    Dependency resolving the request's actor.

    Raises UnauthorizedError (401) if the agency header is missing.
    """
    if not agency_id:
        logger.warning("Request without %s header", settings.ACTOR_AGENCY_HEADER)
        raise UnauthorizedError(
            f"Missing {settings.ACTOR_AGENCY_HEADER} header"
        )
    return Actor(agency_id=agency_id.strip(), role=(role or "member").strip().lower())
