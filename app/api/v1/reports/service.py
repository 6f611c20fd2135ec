from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import OUTSTANDING_STATUSES, TERMINAL_STATUSES, FeeStatus, StudentStatus
from app.core.exceptions import NotFoundError
from app.core.fee_rules import ZERO, is_terminal, round_money, to_decimal
from app.core.models import AcademicTerm, Student, StudentTermAssignment, TermFeeItem

from .schemas import (
    GradeOverdueSummary,
    GradeStatistics,
    OverdueReportResponse,
    OverdueStudent,
    TermOverdueSummary,
    TermStatisticsResponse,
)

UNGRADED = "Unassigned"


def _rate(collected: Decimal, expected: Decimal) -> Decimal:
    if expected <= 0:
        return ZERO
    return round_money(collected * 100 / expected)


def _average(total: Decimal, count: int) -> Decimal:
    return round_money(total / count) if count else ZERO


async def term_statistics(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
) -> TermStatisticsResponse:
    """
    Collection figures for one term. Money totals cover live assignments only;
    WAIVED/CANCELLED ones appear in the status distribution but not in the amounts.
    """
    term = (
        await db.execute(
            select(AcademicTerm).where(AcademicTerm.id == term_id, AcademicTerm.tenant_id == tenant_id)
        )
    ).scalar_one_or_none()
    if not term:
        raise NotFoundError("Term not found")

    total_students = (
        await db.execute(
            select(func.count(Student.id)).where(
                Student.tenant_id == tenant_id,
                Student.status == StudentStatus.ACTIVE.value,
            )
        )
    ).scalar() or 0

    rows = (
        await db.execute(
            select(StudentTermAssignment, Student.grade)
            .join(Student, Student.id == StudentTermAssignment.student_id)
            .where(
                StudentTermAssignment.tenant_id == tenant_id,
                StudentTermAssignment.academic_term_id == term_id,
            )
        )
    ).all()

    status_distribution: Dict[str, int] = {s.value: 0 for s in FeeStatus}
    by_grade: Dict[str, dict] = defaultdict(
        lambda: {"count": 0, "expected": ZERO, "collected": ZERO, "pending": ZERO}
    )
    billed = 0
    live = 0
    expected = collected = pending = overdue = ZERO
    for sta, grade in rows:
        status_distribution[sta.term_fee_status] = status_distribution.get(sta.term_fee_status, 0) + 1
        if sta.is_billed:
            billed += 1
        if is_terminal(sta.term_fee_status):
            continue
        live += 1
        total_fee = to_decimal(sta.total_term_fee)
        paid = to_decimal(sta.paid_amount)
        outstanding = to_decimal(sta.pending_amount)
        expected += total_fee
        collected += paid
        pending += outstanding
        if sta.term_fee_status == FeeStatus.OVERDUE.value:
            overdue += outstanding
        g = by_grade[grade or UNGRADED]
        g["count"] += 1
        g["expected"] += total_fee
        g["collected"] += paid
        g["pending"] += outstanding

    fee_type_rows = (
        await db.execute(
            select(TermFeeItem.fee_type, func.coalesce(func.sum(TermFeeItem.amount), 0))
            .join(StudentTermAssignment, StudentTermAssignment.id == TermFeeItem.assignment_id)
            .where(
                StudentTermAssignment.tenant_id == tenant_id,
                StudentTermAssignment.academic_term_id == term_id,
                StudentTermAssignment.term_fee_status.notin_([s.value for s in TERMINAL_STATUSES]),
            )
            .group_by(TermFeeItem.fee_type)
            .order_by(TermFeeItem.fee_type)
        )
    ).all()

    grade_statistics = [
        GradeStatistics(
            grade=grade,
            student_count=g["count"],
            expected_fee=round_money(g["expected"]),
            collected=round_money(g["collected"]),
            pending=round_money(g["pending"]),
            collection_rate=_rate(g["collected"], g["expected"]),
            average_fee=_average(g["expected"], g["count"]),
        )
        for grade, g in sorted(by_grade.items())
    ]
    return TermStatisticsResponse(
        term_id=term.id,
        term_name=term.name,
        academic_year=term.academic_year,
        generated_at=datetime.now(timezone.utc),
        total_students=total_students,
        billed_students=billed,
        unbilled_students=max(0, total_students - billed),
        total_expected_fee=round_money(expected),
        total_collected=round_money(collected),
        total_pending=round_money(pending),
        total_overdue=round_money(overdue),
        collection_rate=_rate(collected, expected),
        average_fee_per_student=_average(expected, live),
        fee_status_distribution=status_distribution,
        grade_statistics=grade_statistics,
        fee_type_distribution={fee_type: round_money(to_decimal(amount)) for fee_type, amount in fee_type_rows},
    )


async def overdue_report(
    db: AsyncSession,
    tenant_id: UUID,
    today: Optional[date] = None,
) -> OverdueReportResponse:
    """
    Students with outstanding fee items past their due date, largest amount first.
    Items count as overdue by due date even before a recalculation has flagged them.
    """
    today = today or date.today()
    rows = (
        await db.execute(
            select(TermFeeItem, StudentTermAssignment, Student, AcademicTerm)
            .join(StudentTermAssignment, StudentTermAssignment.id == TermFeeItem.assignment_id)
            .join(Student, Student.id == StudentTermAssignment.student_id)
            .join(AcademicTerm, AcademicTerm.id == StudentTermAssignment.academic_term_id)
            .where(
                TermFeeItem.tenant_id == tenant_id,
                TermFeeItem.status.in_([s.value for s in OUTSTANDING_STATUSES]),
                TermFeeItem.due_date < today,
                StudentTermAssignment.term_fee_status.notin_([s.value for s in TERMINAL_STATUSES]),
            )
            .order_by(TermFeeItem.due_date, TermFeeItem.id)
        )
    ).all()

    per_student: Dict[UUID, dict] = {}
    per_term: Dict[UUID, dict] = {}
    total_items = 0
    for item, sta, student, term in rows:
        balance = item.balance
        if balance <= 0:
            continue
        total_items += 1
        entry = per_student.setdefault(
            student.id,
            {"student": student, "amount": ZERO, "items": 0, "dates": [], "assignments": {}},
        )
        entry["amount"] += balance
        entry["items"] += 1
        entry["dates"].append(item.due_date)
        entry["assignments"][sta.id] = sta

        t = per_term.setdefault(term.id, {"term": term, "amount": ZERO, "students": set()})
        t["amount"] += balance
        t["students"].add(student.id)

    students: List[OverdueStudent] = []
    for entry in per_student.values():
        student = entry["student"]
        assignments = entry["assignments"].values()
        reminder_dates = [a.last_reminder_date for a in assignments if a.last_reminder_date]
        earliest = min(entry["dates"])
        students.append(
            OverdueStudent(
                student_id=student.id,
                student_name=student.full_name,
                admission_number=student.admission_number,
                grade=student.grade,
                total_overdue_amount=round_money(entry["amount"]),
                overdue_items_count=entry["items"],
                earliest_due_date=earliest,
                latest_due_date=max(entry["dates"]),
                days_overdue=(today - earliest).days,
                guardian_name=student.guardian_name,
                guardian_phone=student.guardian_phone,
                guardian_email=student.guardian_email,
                reminders_sent=sum(a.reminders_sent or 0 for a in assignments),
                last_reminder_date=max(reminder_dates) if reminder_dates else None,
            )
        )
    students.sort(key=lambda s: (-s.total_overdue_amount, s.admission_number))

    high = settings.overdue_high_threshold
    medium = settings.overdue_medium_threshold
    by_grade: Dict[str, List[Decimal]] = defaultdict(list)
    for s in students:
        by_grade[s.grade or UNGRADED].append(s.total_overdue_amount)

    total_amount = round_money(sum((s.total_overdue_amount for s in students), ZERO))
    return OverdueReportResponse(
        generated_at=datetime.now(timezone.utc),
        as_of=today,
        total_overdue_amount=total_amount,
        total_students=len(students),
        total_overdue_items=total_items,
        average_overdue_per_student=_average(total_amount, len(students)),
        students_with_high_overdue=sum(1 for s in students if s.total_overdue_amount > high),
        students_with_medium_overdue=sum(1 for s in students if medium <= s.total_overdue_amount <= high),
        students_with_low_overdue=sum(1 for s in students if s.total_overdue_amount < medium),
        students=students,
        grade_breakdown=[
            GradeOverdueSummary(
                grade=grade,
                student_count=len(amounts),
                total_overdue_amount=round_money(sum(amounts, ZERO)),
                average_overdue=_average(sum(amounts, ZERO), len(amounts)),
            )
            for grade, amounts in sorted(by_grade.items())
        ],
        term_breakdown=[
            TermOverdueSummary(
                term_id=t["term"].id,
                term_name=t["term"].name,
                academic_year=t["term"].academic_year,
                student_count=len(t["students"]),
                total_overdue_amount=round_money(t["amount"]),
            )
            for t in sorted(per_term.values(), key=lambda t: t["term"].start_date)
        ],
    )
