from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.events import service
from app.api.v1.events.schemas import ApprovalRespond, EventCreate, EventUpdate
from app.core.aggregates.common import utc_now
from app.core.cache import InMemoryCacheService
from app.core.exceptions import ServiceError
from app.core.models import EventApproval


def _event(**overrides) -> EventCreate:
    now = utc_now()
    data = dict(
        title="Zoo trip",
        type="TRIP",
        start_date=now + timedelta(days=10),
        deadline=now + timedelta(days=5),
        target_audience=["Grade 7"],
        requires_approval=True,
    )
    data.update(overrides)
    return EventCreate(**data)


async def _approvals(db: AsyncSession, event_id):
    stmt = select(EventApproval).where(EventApproval.event_id == event_id)
    return list((await db.execute(stmt)).scalars().all())


@pytest.mark.asyncio
async def test_grade_audience_creates_one_pending_approval_per_parent(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    result = await service.create_event(db_session, cache, school.admin_user, _event())

    approvals = await _approvals(db_session, result.event.id)
    assert len(approvals) == 2
    assert {a.status for a in approvals} == {"PENDING"}
    assert {(a.student_id, a.parent_id) for a in approvals} == {
        (school.ana.id, school.pam.id),
        (school.ben.id, school.pete.id),
    }
    assert result.fan_out.targeted_students == 2
    assert result.fan_out.created == 2


@pytest.mark.asyncio
async def test_fan_out_rerun_fills_gaps_only(db_session: AsyncSession, cache: InMemoryCacheService, school) -> None:
    result = await service.create_event(db_session, cache, school.admin_user, _event(target_audience=["All"]))
    assert result.fan_out.created == 3

    rerun = await service.rerun_event_fan_out(db_session, cache, school.admin_user, result.event.id)
    assert rerun.created == 0
    assert rerun.skipped == 3

    count = (
        await db_session.execute(
            select(func.count(EventApproval.id)).where(EventApproval.event_id == result.event.id)
        )
    ).scalar_one()
    assert count == 3


@pytest.mark.asyncio
async def test_event_without_approval_creates_no_rows(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    result = await service.create_event(db_session, cache, school.admin_user, _event(requires_approval=False))
    assert result.fan_out is None
    assert await _approvals(db_session, result.event.id) == []

    with pytest.raises(ServiceError) as exc:
        await service.rerun_event_fan_out(db_session, cache, school.admin_user, result.event.id)
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_audience_edit_keeps_existing_approvals(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    result = await service.create_event(db_session, cache, school.admin_user, _event())
    await service.update_event(
        db_session, cache, school.admin_user, result.event.id, EventUpdate(target_audience=["Grade 8"])
    )
    approvals = await _approvals(db_session, result.event.id)
    assert {a.student_id for a in approvals} == {school.ana.id, school.ben.id}


@pytest.mark.asyncio
async def test_parent_sees_pending_approval_and_responds(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    created = await service.create_event(db_session, cache, school.admin_user, _event(target_audience=["All"]))

    pending = await service.get_parent_pending_approvals(db_session, school.pam_user)
    assert len(pending) == 1
    assert sorted(pending[0].children_pending) == ["Ana", "Cal"]
    assert pending[0].is_urgent is False

    view = await service.get_parent_events(db_session, cache, school.pam_user)
    assert view.totals.pending == 2

    result = await service.bulk_respond(
        db_session, cache, school.pam_user, created.event.id, ApprovalRespond(status="APPROVED")
    )
    assert result.updated == 2

    # The parent's cached view was invalidated by the response.
    view = await service.get_parent_events(db_session, cache, school.pam_user)
    assert view.totals.approved == 2
    assert view.totals.pending == 0
    assert await service.get_parent_pending_approvals(db_session, school.pam_user) == []


@pytest.mark.asyncio
async def test_parent_cannot_answer_another_familys_approval(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    created = await service.create_event(db_session, cache, school.admin_user, _event())
    bens = [a for a in await _approvals(db_session, created.event.id) if a.student_id == school.ben.id][0]

    with pytest.raises(ServiceError) as exc:
        await service.respond_to_approval(
            db_session, cache, school.pam_user, bens.id, ApprovalRespond(status="DECLINED")
        )
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_response_after_deadline_is_rejected(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    now = utc_now()
    created = await service.create_event(
        db_session,
        cache,
        school.admin_user,
        _event(start_date=now + timedelta(days=3), deadline=now - timedelta(hours=1)),
    )
    bens = [a for a in await _approvals(db_session, created.event.id) if a.student_id == school.ben.id][0]

    with pytest.raises(ServiceError) as exc:
        await service.respond_to_approval(
            db_session, cache, school.pete_user, bens.id, ApprovalRespond(status="APPROVED")
        )
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_admin_events_view_counts_approvals(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    await service.create_event(db_session, cache, school.admin_user, _event())
    view = await service.get_admin_events(db_session, cache, school.admin_user)
    assert view.total == 1
    assert view.upcoming == 1
    assert view.pending_approvals == 2


@pytest.mark.asyncio
async def test_create_event_endpoint_requires_admin(client: AsyncClient, login, school) -> None:
    now = utc_now()
    payload = {
        "title": "Sports day",
        "type": "SPORTS",
        "start_date": (now + timedelta(days=7)).isoformat(),
        "deadline": (now + timedelta(days=3)).isoformat(),
        "target_audience": ["Grade 8"],
        "requires_approval": True,
    }

    login(school.pam_user)
    response = await client.post("/api/v1/events", json=payload)
    assert response.status_code == 403

    login(school.admin_user)
    response = await client.post("/api/v1/events", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["fan_out"]["created"] == 1
    assert data["event"]["target_audience"] == ["Grade 8"]


@pytest.mark.asyncio
async def test_duplicate_pair_in_a_batch_is_skipped_on_retry(
    db_session: AsyncSession, cache: InMemoryCacheService, school, monkeypatch
) -> None:
    ana_id, pam_id = school.ana.id, school.pam.id
    resolve_pairs = service._student_parent_pairs

    async def pairs_with_repeat(db, student_ids):
        pairs = await resolve_pairs(db, student_ids)
        return pairs + [(ana_id, pam_id)]

    monkeypatch.setattr(service, "_student_parent_pairs", pairs_with_repeat)

    result = await service.create_event(db_session, cache, school.admin_user, _event())

    assert result.fan_out.created == 2
    assert result.fan_out.skipped == 1
    assert result.event.title == "Zoo trip"
    approvals = await _approvals(db_session, result.event.id)
    assert len(approvals) == 2
    assert (ana_id, pam_id) in {(a.student_id, a.parent_id) for a in approvals}
