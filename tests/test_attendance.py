from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.attendance import service
from app.api.v1.attendance.schemas import AttendanceMarkRequest
from app.core.aggregates.common import utc_today
from app.core.cache import InMemoryCacheService
from app.core.exceptions import ServiceError
from app.core.models import Attendance


def _mark(school, day, **statuses) -> AttendanceMarkRequest:
    students = {"ana": school.ana.id, "ben": school.ben.id, "cal": school.cal.id}
    return AttendanceMarkRequest(
        section_id=school.sec7a.id,
        date=day,
        entries=[{"student_id": students[name], "status": status} for name, status in statuses.items()],
    )


@pytest.mark.asyncio
async def test_remarking_a_day_updates_the_existing_row(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    today = utc_today()
    first = await service.mark_attendance(db_session, cache, school.tara_user, _mark(school, today, ana="ABSENT", ben="PRESENT"))
    second = await service.mark_attendance(db_session, cache, school.tara_user, _mark(school, today, ana="LATE"))

    assert (first.created, first.updated) == (2, 0)
    assert (second.created, second.updated) == (0, 1)

    rows = (await db_session.execute(select(Attendance).where(Attendance.student_id == school.ana.id))).scalars().all()
    assert len(rows) == 1
    assert rows[0].status == "LATE"


@pytest.mark.asyncio
async def test_marking_refreshes_cached_history(db_session: AsyncSession, cache: InMemoryCacheService, school) -> None:
    before = await service.get_student_attendance(db_session, cache, school.ana_user)
    assert before.stats.total_days == 0

    await service.mark_attendance(db_session, cache, school.tara_user, _mark(school, utc_today(), ana="PRESENT"))

    after = await service.get_student_attendance(db_session, cache, school.ana_user)
    assert after.stats.total_days == 1
    assert after.stats.percentage == 100


@pytest.mark.asyncio
async def test_future_dates_and_outsiders_are_rejected(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    with pytest.raises(ServiceError) as exc:
        await service.mark_attendance(
            db_session, cache, school.tara_user, _mark(school, utc_today() + timedelta(days=1), ana="PRESENT")
        )
    assert exc.value.status_code == 400

    with pytest.raises(ServiceError) as exc:
        await service.mark_attendance(db_session, cache, school.tara_user, _mark(school, utc_today(), cal="PRESENT"))
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_teacher_overview_tracks_marked_sections(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    overview = await service.get_teacher_attendance_overview(db_session, cache, school.tara_user)
    assert [s.is_marked_today for s in overview.sections] == [False]
    assert [r.student_name for r in overview.roster] == ["Ana Lopez", "Ben Okafor"]
    assert overview.roster[0].status is None

    await service.mark_attendance(db_session, cache, school.tara_user, _mark(school, utc_today(), ana="PRESENT", ben="ABSENT"))

    overview = await service.get_teacher_attendance_overview(db_session, cache, school.tara_user)
    assert overview.sections[0].is_marked_today is True
    assert [r.status for r in overview.roster] == ["PRESENT", "ABSENT"]


@pytest.mark.asyncio
async def test_parent_cannot_read_other_childrens_attendance(client: AsyncClient, login, school) -> None:
    login(school.pete_user)
    response = await client.get(f"/api/v1/attendance/children/{school.ana.id}")
    assert response.status_code == 403

    response = await client.get(f"/api/v1/attendance/children/{school.ben.id}")
    assert response.status_code == 200
    assert response.json()["student_name"] == "Ben Okafor"


@pytest.mark.asyncio
async def test_mark_endpoint(client: AsyncClient, login, school) -> None:
    payload = {
        "section_id": str(school.sec7a.id),
        "date": utc_today().isoformat(),
        "entries": [{"student_id": str(school.ana.id), "status": "PRESENT"}],
    }

    login(school.ana_user)
    response = await client.post("/api/v1/attendance/mark", json=payload)
    assert response.status_code == 403

    login(school.tara_user)
    response = await client.post("/api/v1/attendance/mark", json=payload)
    assert response.status_code == 201
    assert response.json()["created"] == 1


@pytest.mark.asyncio
async def test_lost_insert_race_is_retried_as_update(
    db_session: AsyncSession, cache: InMemoryCacheService, school, monkeypatch
) -> None:
    today = utc_today()
    payload = _mark(school, today, ana="PRESENT", ben="LATE")
    ana_id, section_id, tenant_id, tara_id = school.ana.id, school.sec7a.id, school.tenant.id, school.tara.id
    apply_marks = service._apply_marks
    calls = []

    async def lose_first_race(db, *args):
        calls.append(args)
        if len(calls) == 1:
            # Another request marks Ana first.
            db.add(
                Attendance(
                    tenant_id=tenant_id,
                    student_id=ana_id,
                    section_id=section_id,
                    date=today,
                    status="ABSENT",
                    marked_by=tara_id,
                )
            )
            await db.commit()
            raise IntegrityError("INSERT INTO attendance", {}, Exception("duplicate key"))
        return await apply_marks(db, *args)

    monkeypatch.setattr(service, "_apply_marks", lose_first_race)

    result = await service.mark_attendance(db_session, cache, school.tara_user, payload)

    assert len(calls) == 2
    assert (result.created, result.updated) == (1, 1)
    rows = (await db_session.execute(select(Attendance).where(Attendance.student_id == ana_id))).scalars().all()
    assert len(rows) == 1
    assert rows[0].status == "PRESENT"
