"""
test_distribution.py — Recipient resolution, fan-out, partial failure
and redistribution.

Geometry used throughout (coordinates are [longitude, latitude]):
    creator  [0, 0]
    near     [0, 0.05]  ~5.6 km   inside a 10 km radius
    far      [0, 5]     ~556 km   outside
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from backend.app.alerts.distribution import (
    RecipientSet,
    distribute_alert,
    fan_out,
    redistribute_alert,
    resolve_recipients,
)
from backend.app.alerts.models import AgencyAlert, DeliveryVia
from backend.app.alerts.store import deactivate_alert, get_alert
from backend.app.alerts.tracker import list_for_agency, unread_count
from backend.app.core.errors import DependencyUnavailableError, ForbiddenError
from backend.app.core.security import Actor


async def _visible_alert_ids(session, agency_id: str) -> set:
    rows = await session.scalars(
        select(AgencyAlert.alert_id).where(AgencyAlert.agency_id == agency_id)
    )
    return set(rows)


async def _via(session, agency_id: str, alert_id: str) -> str:
    return await session.scalar(
        select(AgencyAlert.via).where(
            AgencyAlert.agency_id == agency_id, AgencyAlert.alert_id == alert_id,
        )
    )


@pytest.fixture
async def geometry(make_agency):
    creator = await make_agency("Creator", coordinates=(0.0, 0.0))
    near = await make_agency("Near", coordinates=(0.0, 0.05))
    far = await make_agency("Far", coordinates=(0.0, 5.0))
    return creator.id, near.id, far.id


class TestRecipientSet:

    def test_union_counts_each_agency_once(self):
        rs = RecipientSet(explicit={"a", "b"}, proximity={"b", "c"})
        assert rs.all_ids == {"a", "b", "c"}

    def test_explicit_wins(self):
        rs = RecipientSet(explicit={"a"}, proximity={"a", "b"})
        assert rs.via("a") == DeliveryVia.EXPLICIT
        assert rs.via("b") == DeliveryVia.PROXIMITY


class TestDistribution:

    async def test_near_agency_sees_alert_far_does_not(self, session, make_alert, geometry):
        creator, near, far = geometry
        alert = await make_alert(creator, coordinates=[0.0, 0.0], radius=10)

        assert alert.id in await _visible_alert_ids(session, near)
        assert alert.id not in await _visible_alert_ids(session, far)

    async def test_far_agency_sees_alert_when_listed(self, session, make_alert, geometry):
        creator, near, far = geometry
        alert = await make_alert(creator, radius=10, recipients=[far])

        assert alert.id in await _visible_alert_ids(session, far)
        assert await _via(session, far, alert.id) == DeliveryVia.EXPLICIT.value
        assert await _via(session, near, alert.id) == DeliveryVia.PROXIMITY.value

    async def test_creator_not_a_proximity_recipient(self, session, make_alert, geometry):
        creator, _, _ = geometry
        alert = await make_alert(creator, radius=10)
        assert alert.id not in await _visible_alert_ids(session, creator)
        assert await unread_count(session, creator) == 0

    async def test_listed_and_nearby_counted_once(self, session, make_alert, geometry):
        creator, near, _ = geometry
        alert = await make_alert(creator, radius=10, recipients=[near])

        listed = await list_for_agency(session, near)
        assert [a.id for a in listed] == [alert.id]
        assert await unread_count(session, near) == 1

    async def test_report_counts(self, session, make_alert, geometry):
        creator, near, far = geometry
        alert = await make_alert(creator, radius=10, recipients=[far, near], distribute=False)

        report = await distribute_alert(session, alert)

        assert report.succeeded is True
        assert report.explicit_count == 2
        assert report.proximity_count == 1
        assert report.recipient_count == 2
        assert report.completed_at is not None

    async def test_fan_out_idempotent(self, session, make_alert, geometry):
        creator, near, _ = geometry
        alert = await make_alert(creator, radius=10)
        recipients = await resolve_recipients(session, alert)

        await fan_out(session, alert, recipients)
        await fan_out(session, alert, recipients)

        rows = (await session.scalars(
            select(AgencyAlert).where(AgencyAlert.alert_id == alert.id)
        )).all()
        assert [r.agency_id for r in rows] == [near]


class TestPartialFailure:

    async def test_proximity_failure_still_creates_alert(self, session, make_alert, geometry):
        creator, near, far = geometry
        failing = AsyncMock(side_effect=DependencyUnavailableError("agency_directory", "timeout"))

        with patch("backend.app.alerts.distribution.find_nearby", failing):
            alert = await make_alert(creator, radius=10, recipients=[far])
        alert_id = alert.id

        assert failing.await_count == 1
        assert (await get_alert(session, alert_id)).id == alert_id
        # No fan-out rows, but explicit recipients still see it
        assert await _visible_alert_ids(session, near) == set()
        assert [a.id for a in await list_for_agency(session, far)] == [alert_id]
        assert await unread_count(session, near) == 0

    async def test_unexpected_error_still_creates_alert(self, session, make_alert, geometry):
        creator, near, _ = geometry
        failing = AsyncMock(side_effect=ConnectionRefusedError("directory down"))

        with patch("backend.app.alerts.distribution.find_nearby", failing):
            alert = await make_alert(creator, radius=10)
        alert_id = alert.id

        assert (await get_alert(session, alert_id)).id == alert_id
        assert await _visible_alert_ids(session, near) == set()

    async def test_unexpected_error_is_reported(self, session, make_alert, geometry):
        creator, _, _ = geometry
        alert = await make_alert(creator, radius=10, distribute=False)
        failing = AsyncMock(side_effect=TimeoutError("pool checkout"))

        with patch("backend.app.alerts.distribution.find_nearby", failing):
            report = await distribute_alert(session, alert)

        assert report.succeeded is False
        assert report.error == "TimeoutError: pool checkout"
        assert report.completed_at is not None

    async def test_fan_out_write_failure_is_reported(self, session, make_alert, geometry):
        creator, _, _ = geometry
        alert = await make_alert(creator, radius=10, distribute=False)
        alert_id = alert.id
        failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("database is locked")))

        with patch("backend.app.alerts.distribution.insert_ignore", failing):
            report = await distribute_alert(session, alert)

        assert report.succeeded is False
        assert "fan_out" in report.error
        assert (await get_alert(session, alert_id)).id == alert_id

    async def test_redistribute_recovers_lost_fan_out(self, session, make_alert, geometry):
        creator, near, _ = geometry
        failing = AsyncMock(side_effect=DependencyUnavailableError("agency_directory", "timeout"))
        with patch("backend.app.alerts.distribution.find_nearby", failing):
            alert = await make_alert(creator, radius=10)
        alert_id = alert.id

        report = await redistribute_alert(session, alert_id, Actor(creator))

        assert report.succeeded is True
        assert alert_id in await _visible_alert_ids(session, near)
        assert await unread_count(session, near) == 1


class TestRedistribute:

    async def test_picks_up_agency_that_moved_in(self, session, make_agency, make_alert, geometry):
        creator, _, far = geometry
        alert = await make_alert(creator, radius=10)
        late = await make_agency("Late arrival", coordinates=(0.0, 0.02))
        late_id = late.id

        report = await redistribute_alert(session, alert.id, Actor(creator))

        assert report.recipient_count == 2
        assert alert.id in await _visible_alert_ids(session, late_id)

    async def test_non_creator_forbidden(self, session, make_alert, geometry):
        creator, near, _ = geometry
        alert = await make_alert(creator, radius=10)
        with pytest.raises(ForbiddenError):
            await redistribute_alert(session, alert.id, Actor(near))

    async def test_elevated_role_allowed(self, session, make_alert, geometry):
        creator, _, _ = geometry
        alert = await make_alert(creator, radius=10)
        report = await redistribute_alert(session, alert.id, Actor("ops", role="admin"))
        assert report.succeeded is True

    async def test_inactive_alert_rejected(self, session, make_alert, geometry):
        creator, _, _ = geometry
        alert = await make_alert(creator, radius=10)
        await deactivate_alert(session, alert.id, Actor(creator))
        with pytest.raises(ForbiddenError):
            await redistribute_alert(session, alert.id, Actor(creator))
