from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from app.api.v1.grades.schemas import GradeResultItem
from app.core.aggregates.attendance import (
    attendance_by_student,
    monthly_attendance,
    participation_percentage,
    summarize_attendance,
)
from app.core.aggregates.common import round_half_up
from app.core.aggregates.dashboard import (
    approval_counts,
    assessments_needing_grading,
    group_pending_approvals,
    is_urgent,
    sections_pending_attendance,
)
from app.core.aggregates.fees import (
    breakdown_by_child,
    effective_invoice_status,
    outstanding_by_student,
    summarize_invoices,
)
from app.core.aggregates.grades import (
    grade_for_percentage,
    gradebook_row,
    gradebook_stats,
    percentage,
    subject_breakdown,
    summarize_scores,
)
from app.core.aggregates.trends import classify_trend
from app.core.enums import InvoiceStatus, TrendDirection


def _record(day: date, status: str, student_id=None):
    return SimpleNamespace(date=day, status=status, student_id=student_id)


def _invoice(amount, status, due, student_id=None):
    return SimpleNamespace(amount=Decimal(amount), status=status, due_date=due, student_id=student_id)


def _result(subject_id, subject_name, subject_color, pct):
    return dict(
        id=uuid4(),
        assessment_id=uuid4(),
        title="Unit test",
        type="TEST",
        subject_id=subject_id,
        subject_name=subject_name,
        subject_color=subject_color,
        marks_obtained=pct,
        total_marks=100,
        percentage=pct,
        date=date(2024, 3, 1),
    )


# ----- Attendance -----
def test_attendance_counts_late_as_attended() -> None:
    day = date(2026, 10, 1)
    statuses = ["PRESENT", "PRESENT", "LATE", "ABSENT", "PRESENT"]
    stats = summarize_attendance(_record(day + timedelta(days=i), s) for i, s in enumerate(statuses))

    assert stats.total_days == 5
    assert stats.present_days == 3
    assert stats.late_days == 1
    assert stats.absent_days == 1
    assert stats.percentage == 80


def test_attendance_without_records_is_zero() -> None:
    stats = summarize_attendance([])
    assert stats.total_days == 0
    assert stats.percentage == 0


def test_attendance_since_filters_older_records() -> None:
    records = [_record(date(2026, 9, 30), "ABSENT"), _record(date(2026, 10, 2), "PRESENT")]
    stats = summarize_attendance(records, since=date(2026, 10, 1))
    assert stats.total_days == 1
    assert stats.percentage == 100


def test_monthly_buckets_newest_first_and_limited() -> None:
    records = [_record(date(2026, month, 3), "PRESENT") for month in range(1, 10)]
    records.append(_record(date(2026, 9, 4), "ABSENT"))

    months = monthly_attendance(records, limit=6)

    assert [m.month for m in months] == [9, 8, 7, 6, 5, 4]
    assert months[0].label == "Sep"
    assert months[0].total == 2
    assert months[0].percentage == 50


def test_attendance_by_student() -> None:
    a, b = uuid4(), uuid4()
    day = date(2026, 10, 1)
    result = attendance_by_student(
        [_record(day, "PRESENT", a), _record(day, "ABSENT", a), _record(day, "LATE", b)]
    )
    assert result == {a: 50, b: 100}


# ----- Grades -----
def test_percentage_and_grade_bands() -> None:
    assert percentage(72, 100) == 72
    assert grade_for_percentage(72) == "B"
    assert grade_for_percentage(90) == "A+"
    assert grade_for_percentage(80) == "A"
    assert grade_for_percentage(69.9) == "C"
    assert percentage(5, 0) == 0


def test_summarize_scores_distinguishes_no_data() -> None:
    empty = summarize_scores([])
    assert empty.has_data is False
    assert empty.average is None

    stats = summarize_scores([70, 85, 90])
    assert stats.has_data is True
    assert stats.average == 82
    assert stats.highest == 90
    assert stats.lowest == 70


def test_subject_breakdown_keeps_first_seen_order() -> None:
    math, science = uuid4(), uuid4()
    items = [
        GradeResultItem(**_result(science, "Science", None, 60)),
        GradeResultItem(**_result(math, "Math", "#00f", 80)),
        GradeResultItem(**_result(science, "Science", None, 80)),
    ]
    breakdown = subject_breakdown(items)
    assert [s.subject_name for s in breakdown] == ["Science", "Math"]
    assert breakdown[0].stats.average == 70
    assert breakdown[1].color == "#00f"


def test_gradebook_row_averages_graded_assessments_only() -> None:
    quiz = SimpleNamespace(id=uuid4(), total_marks=20)
    test = SimpleNamespace(id=uuid4(), total_marks=80)
    exam = SimpleNamespace(id=uuid4(), total_marks=100)
    results = {
        quiz.id: SimpleNamespace(marks_obtained=10, grade="C"),
        test.id: SimpleNamespace(marks_obtained=70, grade="A"),
    }

    row = gradebook_row(uuid4(), "Ana Lopez", "1", [quiz, test, exam], results)

    assert row.results[str(exam.id)] is None
    assert row.results[str(quiz.id)].percentage == 50.0
    assert row.total_obtained == 80
    assert row.total_max == 100
    assert row.average == 80.0


def test_gradebook_stats_without_results() -> None:
    row = gradebook_row(uuid4(), "Ben Okafor", "2", [SimpleNamespace(id=uuid4(), total_marks=10)], {})
    stats = gradebook_stats([row], 1)
    assert stats.has_data is False
    assert stats.lowest_average is None
    assert stats.total_students == 1


def test_classify_trend() -> None:
    assert classify_trend(80, 70) is TrendDirection.UP
    assert classify_trend(60, 70) is TrendDirection.DOWN
    assert classify_trend(74, 70) is TrendDirection.FLAT
    assert classify_trend(None, 70) is None
    assert classify_trend(70, None) is None


# ----- Fees -----
def test_pending_invoice_past_due_is_overdue() -> None:
    today = date(2026, 10, 18)
    yesterday = today - timedelta(days=1)
    assert effective_invoice_status("PENDING", yesterday, today) is InvoiceStatus.OVERDUE
    assert effective_invoice_status("PENDING", today, today) is InvoiceStatus.PENDING
    assert effective_invoice_status("PAID", yesterday, today) is InvoiceStatus.PAID
    assert effective_invoice_status("CANCELLED", yesterday, today) is InvoiceStatus.CANCELLED


def test_summarize_invoices_by_effective_status() -> None:
    today = date(2026, 10, 18)
    invoices = [
        _invoice("100.00", "PENDING", today + timedelta(days=5)),
        _invoice("50.00", "PENDING", today - timedelta(days=5)),
        _invoice("75.50", "PAID", today - timedelta(days=30)),
        _invoice("20.00", "CANCELLED", today - timedelta(days=30)),
    ]
    summary = summarize_invoices(invoices, today)

    assert summary.pending.count == 1
    assert summary.overdue.count == 1
    assert summary.overdue.amount == Decimal("50.00")
    assert summary.paid.amount == Decimal("75.50")
    assert summary.cancelled.count == 1
    assert summary.total_outstanding == Decimal("150.00")


def test_fee_breakdown_per_child() -> None:
    today = date(2026, 10, 18)
    ana, cal = uuid4(), uuid4()
    invoices = [
        _invoice("100", "PENDING", today - timedelta(days=1), ana),
        _invoice("40", "PAID", today, ana),
        _invoice("30", "CANCELLED", today, cal),
    ]

    rows = breakdown_by_child({ana: "Ana", cal: "Cal"}, invoices, today)
    assert [r.student_name for r in rows] == ["Ana", "Cal"]
    assert rows[0].overdue == Decimal("100")
    assert rows[0].paid == Decimal("40")
    assert rows[1].pending == rows[1].paid == rows[1].overdue == Decimal("0")

    assert outstanding_by_student(invoices, today) == {ana: Decimal("100")}


# ----- Dashboard helpers -----
def test_sections_pending_attendance_keeps_order() -> None:
    a, b, c = uuid4(), uuid4(), uuid4()
    assert sections_pending_attendance([a, b, c], {b}) == [a, c]


def test_assessments_needing_grading() -> None:
    full, partial, empty = uuid4(), uuid4(), uuid4()
    needing = assessments_needing_grading({full: 3, partial: 1}, {full: 3, partial: 3, empty: 3})
    assert needing == [partial, empty]


def test_approval_counts() -> None:
    counts = approval_counts(["PENDING", "APPROVED", "PENDING", "DECLINED"])
    assert (counts.pending, counts.approved, counts.declined, counts.total) == (2, 1, 1, 4)


def test_deadline_urgency_rounds_partial_days_up() -> None:
    now = datetime(2026, 10, 18, 12, 0)
    assert is_urgent(now + timedelta(days=2), now) is True
    assert is_urgent(now + timedelta(days=2, hours=1), now) is False
    assert is_urgent(now + timedelta(hours=3), now) is True


def test_group_pending_approvals_per_event() -> None:
    now = datetime(2026, 10, 18, 12, 0)
    trip, fair = uuid4(), uuid4()

    def row(event_id, title, deadline, name):
        return SimpleNamespace(
            event_id=event_id, event_title=title, event_type="TRIP", deadline=deadline, student_name=name
        )

    grouped = group_pending_approvals(
        [
            row(trip, "Zoo trip", now + timedelta(days=1), "Ana"),
            row(fair, "Science fair", now + timedelta(days=10), "Cal"),
            row(trip, "Zoo trip", now + timedelta(days=1), "Cal"),
        ],
        now,
    )
    assert [g.event_title for g in grouped] == ["Zoo trip", "Science fair"]
    assert grouped[0].children_pending == ["Ana", "Cal"]
    assert grouped[0].is_urgent is True
    assert grouped[1].is_urgent is False


def test_percentage_stays_within_bounds() -> None:
    for total in (1, 7, 20, 100):
        for marks in range(total + 1):
            assert 0 <= percentage(marks, total) <= 100


def test_halves_round_up_not_to_even() -> None:
    assert round_half_up(12.5) == 13
    assert round_half_up(72.5) == 73
    assert round_half_up(80.25, 1) == 80.3
    assert percentage(29, 40) == 73
    assert percentage(141, 200) == 71
    assert participation_percentage(1, 0, 8) == 13
    assert summarize_scores([72, 73]).average == 73
