from datetime import time, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.attendance.schemas import AttendanceMarkRequest
from app.api.v1.attendance.service import mark_attendance
from app.api.v1.dashboard import service
from app.api.v1.events.schemas import EventCreate
from app.api.v1.events.service import create_event
from app.core.aggregates.common import utc_now, utc_today
from app.core.cache import InMemoryCacheService
from app.core.models import Announcement, Assessment, FeeInvoice, FeeStructure, SectionSubjectTeacher, TimetableSlot


@pytest.fixture()
async def school_week(db_session: AsyncSession, school):
    """Today's maths lesson for 7A, one assessment, one announcement and an overdue invoice for Ana."""
    today = utc_today()
    tuition = FeeStructure(tenant_id=school.tenant.id, name="Tuition", amount=Decimal("250.00"))
    db_session.add(tuition)
    await db_session.flush()
    db_session.add_all(
        [
            TimetableSlot(
                section_id=school.sec7a.id,
                subject_id=school.math.id,
                teacher_id=school.tara.id,
                day_of_week=today.weekday(),
                start_time=time(9, 0),
                end_time=time(9, 45),
                room="R-12",
            ),
            TimetableSlot(
                section_id=school.sec7a.id,
                subject_id=school.math.id,
                teacher_id=school.tara.id,
                day_of_week=(today.weekday() + 1) % 7,
                start_time=time(10, 0),
                end_time=time(10, 45),
            ),
            Assessment(
                tenant_id=school.tenant.id,
                section_id=school.sec7a.id,
                subject_id=school.math.id,
                created_by=school.tara.id,
                title="Fractions quiz",
                type="QUIZ",
                total_marks=20,
                date=today - timedelta(days=2),
            ),
            Announcement(
                tenant_id=school.tenant.id,
                title="Parents evening",
                audience=["PARENTS"],
                publish_at=utc_now() - timedelta(hours=1),
            ),
            FeeInvoice(
                tenant_id=school.tenant.id,
                student_id=school.ana.id,
                fee_structure_id=tuition.id,
                amount=Decimal("250.00"),
                due_date=today - timedelta(days=3),
                status="PENDING",
            ),
        ]
    )
    await db_session.commit()
    return school


@pytest.mark.asyncio
async def test_student_dashboard(db_session: AsyncSession, cache: InMemoryCacheService, school_week) -> None:
    school = school_week
    dashboard = await service.get_student_dashboard(db_session, cache, school.ana_user)

    assert dashboard.class_name == "Grade 7"
    assert dashboard.section_name == "A"
    assert dashboard.assessment_count == 1
    assert [c.start_time for c in dashboard.today_classes] == [time(9, 0)]
    assert dashboard.today_classes[0].teacher_name == "Tara Teacher"
    # The only announcement targets parents.
    assert dashboard.announcements == []


@pytest.mark.asyncio
async def test_student_timetable_groups_by_day(db_session: AsyncSession, cache: InMemoryCacheService, school_week) -> None:
    timetable = await service.get_student_timetable(db_session, cache, school_week.ana_user)
    assert timetable.section_id == school_week.sec7a.id
    assert sum(len(slots) for slots in timetable.days.values()) == 2

    # Served from cache the second time, with integer day keys restored.
    cached = await service.get_student_timetable(db_session, cache, school_week.ana_user)
    assert cached == timetable


@pytest.mark.asyncio
async def test_teacher_dashboard_tracks_pending_work(
    db_session: AsyncSession, cache: InMemoryCacheService, school_week
) -> None:
    school = school_week
    dashboard = await service.get_teacher_dashboard(db_session, cache, school.tara_user)

    assert dashboard.teacher_name == "Tara Teacher"
    assert [s.label for s in dashboard.sections] == ["Grade 7 - A"]
    assert dashboard.total_students == 2
    assert len(dashboard.today_classes) == 1
    assert [s.label for s in dashboard.sections_pending_attendance] == ["Grade 7 - A"]
    assert [a.title for a in dashboard.assessments_needing_grading] == ["Fractions quiz"]

    await mark_attendance(
        db_session,
        cache,
        school.tara_user,
        AttendanceMarkRequest(
            section_id=school.sec7a.id,
            date=utc_today(),
            entries=[{"student_id": school.ana.id, "status": "PRESENT"}],
        ),
    )
    dashboard = await service.get_teacher_dashboard(db_session, cache, school.tara_user)
    assert dashboard.sections_pending_attendance == []


@pytest.mark.asyncio
async def test_parent_dashboard(db_session: AsyncSession, cache: InMemoryCacheService, school_week) -> None:
    school = school_week
    now = utc_now()
    await create_event(
        db_session,
        cache,
        school.admin_user,
        EventCreate(
            title="Museum visit",
            type="TRIP",
            start_date=now + timedelta(days=4),
            deadline=now + timedelta(days=1),
            target_audience=["Grade 7"],
            requires_approval=True,
        ),
    )

    dashboard = await service.get_parent_dashboard(db_session, cache, school.pam_user)

    assert {c.student_name for c in dashboard.children} == {"Ana Lopez", "Cal Smith"}
    by_name = {c.student_name: c for c in dashboard.children}
    assert by_name["Ana Lopez"].outstanding_fees == Decimal("250.00")
    assert dashboard.total_outstanding == Decimal("250.00")
    assert dashboard.average_attendance is None
    assert [a.title for a in dashboard.announcements] == ["Parents evening"]
    assert len(dashboard.pending_approvals) == 1
    assert dashboard.pending_approvals[0].children_pending == ["Ana"]
    assert dashboard.pending_approvals[0].is_urgent is True


@pytest.mark.asyncio
async def test_admin_dashboard_endpoint(client: AsyncClient, login, school_week) -> None:
    school = school_week
    login(school.tara_user)
    response = await client.get("/api/v1/dashboard/admin")
    assert response.status_code == 403

    login(school.admin_user)
    response = await client.get("/api/v1/dashboard/admin")
    assert response.status_code == 200
    data = response.json()
    assert data["total_students"] == 3
    assert data["total_teachers"] == 1
    assert data["total_classes"] == 2
    assert data["total_sections"] == 2
    assert data["total_subjects"] == 1
    assert data["fees"]["overdue"]["count"] == 1
    assert [(c["class_name"], c["student_count"]) for c in data["students_per_class"]] == [
        ("Grade 7", 2),
        ("Grade 8", 1),
    ]


@pytest.mark.asyncio
async def test_teacher_classes_lists_rosters_in_class_order(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    db_session.add(SectionSubjectTeacher(section_id=school.sec8a.id, subject_id=school.math.id, teacher_id=school.tara.id))
    await db_session.commit()

    classes = await service.get_teacher_classes(db_session, cache, school.tara_user)

    assert [(s.class_name, s.name) for s in classes.sections] == [("Grade 7", "A"), ("Grade 8", "A")]
    grade7, grade8 = classes.sections
    assert grade7.is_class_teacher is True
    assert grade8.is_class_teacher is False
    assert (grade7.student_count, grade8.student_count) == (2, 1)
    assert [s.full_name for s in grade7.students] == ["Ana Lopez", "Ben Okafor"]
    assert [s.name for s in classes.subjects] == ["Mathematics"]


@pytest.mark.asyncio
async def test_teacher_classes_endpoint(client: AsyncClient, login, school) -> None:
    login(school.ana_user)
    assert (await client.get("/api/v1/dashboard/teacher/classes")).status_code == 403

    login(school.tara_user)
    response = await client.get("/api/v1/dashboard/teacher/classes")
    assert response.status_code == 200
    data = response.json()
    assert [s["student_count"] for s in data["sections"]] == [2]
    assert data["subjects"] == []
