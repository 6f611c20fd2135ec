import logging
from datetime import date
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.grade_fees.service import find_grade_fee, match_grade_fee
from app.core.audit import log_fee_audit
from app.core.config import settings
from app.core.enums import AuditAction, FeeStatus, FeeType, StudentStatus, TermStatus, TransportMode
from app.core.exceptions import (
    AlreadyBilledError,
    NotFoundError,
    StateError,
    StudentNotFoundError,
    ValidationError,
)
from app.core.fee_rules import (
    ZERO,
    apply_terminal_status,
    is_terminal,
    recalculate_assignment,
    round_money,
    to_decimal,
)
from app.core.models import (
    AcademicTerm,
    GradeTermFee,
    Student,
    StudentTermAssignment,
    TermFeeItem,
)
from app.core.models.grade_term_fee import FEE_COMPONENTS
from app.db.transaction import commit_or_raise, flush_or_raise

from .schemas import (
    AddFeeItemRequest,
    AssignmentResponse,
    AutoBillResponse,
    ManualUpdateResponse,
    StudentAssignmentsResponse,
    TermFeeItemResponse,
)

logger = logging.getLogger(__name__)

ASSIGNMENTS_TABLE = "student_term_assignments"


def _to_item_response(item: TermFeeItem) -> TermFeeItemResponse:
    return TermFeeItemResponse(
        id=item.id,
        assignment_id=item.assignment_id,
        item_name=item.item_name,
        fee_type=item.fee_type,
        amount=to_decimal(item.amount),
        paid_amount=to_decimal(item.paid_amount),
        balance=item.balance,
        due_date=item.due_date,
        is_mandatory=item.is_mandatory,
        is_auto_generated=item.is_auto_generated,
        sequence_order=item.sequence_order,
        status=item.status,
        notes=item.notes,
    )


def _to_response(sta: StudentTermAssignment, term: Optional[AcademicTerm] = None) -> AssignmentResponse:
    return AssignmentResponse(
        id=sta.id,
        tenant_id=sta.tenant_id,
        student_id=sta.student_id,
        academic_term_id=sta.academic_term_id,
        term_name=term.name if term else None,
        academic_year=term.academic_year if term else None,
        total_term_fee=to_decimal(sta.total_term_fee),
        paid_amount=to_decimal(sta.paid_amount),
        pending_amount=to_decimal(sta.pending_amount),
        term_fee_status=sta.term_fee_status,
        is_billed=sta.is_billed,
        billing_date=sta.billing_date,
        due_date=sta.due_date,
        last_payment_date=sta.last_payment_date,
        reminders_sent=sta.reminders_sent or 0,
        last_reminder_date=sta.last_reminder_date,
        notes=sta.notes,
        version=sta.version,
        fee_items=[_to_item_response(i) for i in sta.fee_items],
        created_at=sta.created_at,
        updated_at=sta.updated_at,
    )


def _totals_snapshot(sta: StudentTermAssignment) -> dict:
    return {
        "total_term_fee": str(round_money(sta.total_term_fee)),
        "paid_amount": str(round_money(sta.paid_amount)),
        "pending_amount": str(round_money(sta.pending_amount)),
        "term_fee_status": sta.term_fee_status,
    }


def _uses_transport(student: Student) -> bool:
    return bool(student.transport_mode) and student.transport_mode != TransportMode.WALKING.value


def build_fee_items(
    tenant_id: UUID,
    student: Student,
    gtf: GradeTermFee,
    due_date: Optional[date],
) -> List[TermFeeItem]:
    """Snapshot a fee schedule into fee items. Zero components are skipped; transport only for bus/private riders."""
    items: List[TermFeeItem] = []
    for order, (field, fee_type, display_name, mandatory) in enumerate(FEE_COMPONENTS, start=1):
        amount = round_money(gtf.component(field))
        if amount <= 0:
            continue
        if fee_type == FeeType.TRANSPORT and not _uses_transport(student):
            continue
        items.append(
            TermFeeItem(
                tenant_id=tenant_id,
                item_name=display_name,
                fee_type=fee_type.value,
                amount=amount,
                paid_amount=ZERO,
                due_date=due_date,
                is_mandatory=mandatory,
                is_auto_generated=True,
                sequence_order=order,
                status=FeeStatus.PENDING.value,
            )
        )
    return items


async def _get_student(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> Student:
    result = await db.execute(
        select(Student).where(Student.id == student_id, Student.tenant_id == tenant_id)
    )
    student = result.scalar_one_or_none()
    if not student:
        raise StudentNotFoundError("Student not found")
    return student


async def _get_billable_term(db: AsyncSession, tenant_id: UUID, term_id: UUID) -> AcademicTerm:
    result = await db.execute(
        select(AcademicTerm).where(AcademicTerm.id == term_id, AcademicTerm.tenant_id == tenant_id)
    )
    term = result.scalar_one_or_none()
    if not term:
        raise NotFoundError("Term not found")
    if term.status == TermStatus.CANCELLED.value:
        raise StateError("Cannot bill a cancelled term")
    return term


async def _get_assignment(
    db: AsyncSession,
    tenant_id: UUID,
    assignment_id: UUID,
) -> Tuple[StudentTermAssignment, AcademicTerm]:
    result = await db.execute(
        select(StudentTermAssignment, AcademicTerm)
        .join(AcademicTerm, AcademicTerm.id == StudentTermAssignment.academic_term_id)
        .where(
            StudentTermAssignment.id == assignment_id,
            StudentTermAssignment.tenant_id == tenant_id,
        )
        .with_for_update(of=StudentTermAssignment)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Term assignment not found")
    return row[0], row[1]


async def _already_billed(db: AsyncSession, tenant_id: UUID, student_id: UUID, term_id: UUID) -> bool:
    result = await db.execute(
        select(StudentTermAssignment.id).where(
            StudentTermAssignment.tenant_id == tenant_id,
            StudentTermAssignment.student_id == student_id,
            StudentTermAssignment.academic_term_id == term_id,
        )
    )
    return result.first() is not None


async def _create_assignment(
    db: AsyncSession,
    tenant_id: UUID,
    student: Student,
    term: AcademicTerm,
    gtf: GradeTermFee,
    today: date,
    notes: Optional[str] = None,
    changed_by: Optional[UUID] = None,
) -> StudentTermAssignment:
    due_date = term.default_due_date(settings.default_due_days)
    sta = StudentTermAssignment(
        tenant_id=tenant_id,
        student_id=student.id,
        academic_term_id=term.id,
        is_billed=True,
        billing_date=today,
        due_date=due_date,
        reminders_sent=0,
        notes=notes,
        fee_items=build_fee_items(tenant_id, student, gtf, due_date),
    )
    recalculate_assignment(sta, today)
    db.add(sta)
    # unique (student, term) backs up the read-side check against concurrent billing
    await flush_or_raise(db, f"Student already billed for term {term.term_code}", AlreadyBilledError)
    await log_fee_audit(
        db,
        tenant_id,
        ASSIGNMENTS_TABLE,
        sta.id,
        AuditAction.CREATE.value,
        None,
        {
            "student_id": str(student.id),
            "term_id": str(term.id),
            "grade_term_fee_id": str(gtf.id),
            "items": len(sta.fee_items),
            **_totals_snapshot(sta),
        },
        changed_by,
    )
    return sta


async def bill_student(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    term_id: UUID,
    notes: Optional[str] = None,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> AssignmentResponse:
    """
    Bill one student for one term from the fee schedule of the student's grade.
    Fee item amounts are a snapshot; later schedule edits do not change them.
    """
    today = today or date.today()
    student = await _get_student(db, tenant_id, student_id)
    term = await _get_billable_term(db, tenant_id, term_id)
    if await _already_billed(db, tenant_id, student_id, term_id):
        raise AlreadyBilledError(f"Student already billed for term {term.term_code}")
    if not student.grade:
        raise ValidationError("Student has no grade; cannot determine fee schedule")
    gtf = await find_grade_fee(db, tenant_id, term_id, student.grade, active_only=True)
    if not gtf:
        raise NotFoundError(f"No active fee schedule for grade '{student.grade}' in term {term.term_code}")

    sta = await _create_assignment(db, tenant_id, student, term, gtf, today, notes, changed_by)
    await commit_or_raise(db, f"Student already billed for term {term.term_code}", AlreadyBilledError)
    logger.info(
        "Billed student %s for term %s: total=%s items=%d",
        student.admission_number,
        term.term_code,
        sta.total_term_fee,
        len(sta.fee_items),
    )
    return _to_response(sta, term)


async def auto_bill_term(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> AutoBillResponse:
    """Bill every ACTIVE student not yet billed for the term. Students that cannot be billed are skipped."""
    today = today or date.today()
    term = await _get_billable_term(db, tenant_id, term_id)

    students = (
        await db.execute(
            select(Student)
            .where(Student.tenant_id == tenant_id, Student.status == StudentStatus.ACTIVE.value)
            .order_by(Student.admission_number)
        )
    ).scalars().all()
    billed_ids = set(
        (
            await db.execute(
                select(StudentTermAssignment.student_id).where(
                    StudentTermAssignment.tenant_id == tenant_id,
                    StudentTermAssignment.academic_term_id == term_id,
                )
            )
        ).scalars().all()
    )
    schedules = (
        await db.execute(
            select(GradeTermFee).where(
                GradeTermFee.tenant_id == tenant_id,
                GradeTermFee.academic_term_id == term_id,
                GradeTermFee.is_active.is_(True),
            )
        )
    ).scalars().all()

    billed = 0
    messages: List[str] = []
    for student in students:
        if student.id in billed_ids:
            messages.append(f"{student.admission_number}: already billed")
            continue
        if not student.grade:
            logger.warning("Skipping student %s: no grade", student.admission_number)
            messages.append(f"{student.admission_number}: no grade")
            continue
        gtf = match_grade_fee(schedules, student.grade)
        if not gtf:
            logger.warning("Skipping student %s: no fee schedule for grade %s", student.admission_number, student.grade)
            messages.append(f"{student.admission_number}: no fee schedule for grade {student.grade}")
            continue
        await _create_assignment(db, tenant_id, student, term, gtf, today, changed_by=changed_by)
        billed += 1

    await commit_or_raise(db, f"Term {term.term_code} was billed concurrently; retry")
    logger.info("Auto-billed term %s: billed=%d skipped=%d", term.term_code, billed, len(messages))
    return AutoBillResponse(
        term_id=term.id,
        billed_count=billed,
        skipped_count=len(messages),
        messages=messages,
    )


async def regenerate_bill(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    term_id: UUID,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> AssignmentResponse:
    """Delete an assignment with nothing paid on it and bill the student again from the current schedule."""
    today = today or date.today()
    student = await _get_student(db, tenant_id, student_id)
    term = await _get_billable_term(db, tenant_id, term_id)
    result = await db.execute(
        select(StudentTermAssignment)
        .where(
            StudentTermAssignment.tenant_id == tenant_id,
            StudentTermAssignment.student_id == student_id,
            StudentTermAssignment.academic_term_id == term_id,
        )
        .with_for_update()
    )
    sta = result.scalar_one_or_none()
    if not sta:
        raise NotFoundError("Student has not been billed for this term")
    if is_terminal(sta.term_fee_status):
        raise StateError(f"Cannot regenerate a {sta.term_fee_status} assignment")
    if any(to_decimal(i.paid_amount) > 0 for i in sta.fee_items):
        raise StateError("Cannot regenerate a bill that has payments applied")
    if not student.grade:
        raise ValidationError("Student has no grade; cannot determine fee schedule")
    gtf = await find_grade_fee(db, tenant_id, term_id, student.grade, active_only=True)
    if not gtf:
        raise NotFoundError(f"No active fee schedule for grade '{student.grade}' in term {term.term_code}")

    await log_fee_audit(
        db, tenant_id, ASSIGNMENTS_TABLE, sta.id, AuditAction.DELETE.value, _totals_snapshot(sta), None, changed_by
    )
    await db.delete(sta)
    await flush_or_raise(db, "Bill was modified concurrently; retry")
    new_sta = await _create_assignment(
        db, tenant_id, student, term, gtf, today, notes="Regenerated", changed_by=changed_by
    )
    await commit_or_raise(db)
    logger.info("Regenerated bill for student %s term %s", student.admission_number, term.term_code)
    return _to_response(new_sta, term)


async def add_fee_item(
    db: AsyncSession,
    tenant_id: UUID,
    assignment_id: UUID,
    payload: AddFeeItemRequest,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> AssignmentResponse:
    """Add a manual fee item to an assignment and recalculate it."""
    today = today or date.today()
    sta, term = await _get_assignment(db, tenant_id, assignment_id)
    if is_terminal(sta.term_fee_status):
        raise StateError(f"Cannot add fee items to a {sta.term_fee_status} assignment")

    old_value = _totals_snapshot(sta)
    next_order = max((i.sequence_order or 0 for i in sta.fee_items), default=0) + 1
    item = TermFeeItem(
        tenant_id=tenant_id,
        item_name=payload.item_name.strip(),
        fee_type=payload.fee_type.value,
        amount=round_money(payload.amount),
        paid_amount=ZERO,
        due_date=payload.due_date or sta.due_date,
        is_mandatory=payload.is_mandatory,
        is_auto_generated=False,
        sequence_order=next_order,
        status=FeeStatus.PENDING.value,
        notes=payload.notes,
    )
    sta.fee_items.append(item)
    recalculate_assignment(sta, today)
    await log_fee_audit(
        db,
        tenant_id,
        ASSIGNMENTS_TABLE,
        sta.id,
        AuditAction.UPDATE.value,
        old_value,
        {"added_item": item.item_name, "amount": str(item.amount), **_totals_snapshot(sta)},
        changed_by,
    )
    await commit_or_raise(db)
    logger.info("Added fee item '%s' (%s) to assignment %s", item.item_name, item.amount, sta.id)
    return _to_response(sta, term)


async def remove_fee_item(
    db: AsyncSession,
    tenant_id: UUID,
    item_id: int,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> AssignmentResponse:
    """Remove a manual, unpaid fee item. Items generated from the fee schedule cannot be removed."""
    today = today or date.today()
    result = await db.execute(
        select(TermFeeItem.assignment_id).where(
            TermFeeItem.id == item_id,
            TermFeeItem.tenant_id == tenant_id,
        )
    )
    assignment_id = result.scalar_one_or_none()
    if assignment_id is None:
        raise NotFoundError("Fee item not found")
    sta, term = await _get_assignment(db, tenant_id, assignment_id)
    if is_terminal(sta.term_fee_status):
        raise StateError(f"Cannot remove fee items from a {sta.term_fee_status} assignment")
    item = next((i for i in sta.fee_items if i.id == item_id), None)
    if item is None:
        raise NotFoundError("Fee item not found")
    if item.is_auto_generated:
        raise StateError("Fee items generated from the fee schedule cannot be removed; regenerate the bill instead")
    if to_decimal(item.paid_amount) > 0:
        raise StateError("Cannot remove a fee item that has payments applied")

    old_value = _totals_snapshot(sta)
    sta.fee_items.remove(item)
    recalculate_assignment(sta, today)
    await log_fee_audit(
        db,
        tenant_id,
        ASSIGNMENTS_TABLE,
        sta.id,
        AuditAction.DELETE.value,
        {"removed_item": item.item_name, "amount": str(round_money(item.amount)), **old_value},
        _totals_snapshot(sta),
        changed_by,
    )
    await commit_or_raise(db)
    logger.info("Removed fee item %s from assignment %s", item_id, sta.id)
    return _to_response(sta, term)


async def set_assignment_status(
    db: AsyncSession,
    tenant_id: UUID,
    assignment_id: UUID,
    status: str,
    reason: Optional[str] = None,
    changed_by: Optional[UUID] = None,
) -> AssignmentResponse:
    """
    WAIVE or CANCEL an assignment from any non-terminal state, including PAID.
    Terminal: no further payments or item changes. Money already applied stays on its items.
    """
    new_status = FeeStatus(status)
    sta, term = await _get_assignment(db, tenant_id, assignment_id)
    if is_terminal(sta.term_fee_status):
        raise StateError(f"Assignment is already {sta.term_fee_status}")

    old_value = _totals_snapshot(sta)
    touched = apply_terminal_status(sta, new_status)
    if reason:
        sta.notes = reason.strip()[:500]
    action = AuditAction.WAIVE if new_status == FeeStatus.WAIVED else AuditAction.CANCEL
    await log_fee_audit(
        db,
        tenant_id,
        ASSIGNMENTS_TABLE,
        sta.id,
        action.value,
        old_value,
        {"term_fee_status": sta.term_fee_status, "items": len(touched), "reason": reason},
        changed_by,
    )
    await commit_or_raise(db)
    logger.info("Assignment %s marked %s (%d items)", sta.id, new_status.value, len(touched))
    return _to_response(sta, term)


async def _load_student_assignments(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    for_update: bool = False,
) -> List[Tuple[StudentTermAssignment, AcademicTerm]]:
    stmt = (
        select(StudentTermAssignment, AcademicTerm)
        .join(AcademicTerm, AcademicTerm.id == StudentTermAssignment.academic_term_id)
        .where(
            StudentTermAssignment.tenant_id == tenant_id,
            StudentTermAssignment.student_id == student_id,
        )
        .order_by(AcademicTerm.start_date, AcademicTerm.id)
    )
    if for_update:
        stmt = stmt.with_for_update(of=StudentTermAssignment).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def recalculate_student(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    today: Optional[date] = None,
) -> ManualUpdateResponse:
    """Recalculate every assignment of a student, e.g. to surface OVERDUE once due dates pass."""
    today = today or date.today()
    await _get_student(db, tenant_id, student_id)
    rows = await _load_student_assignments(db, tenant_id, student_id, for_update=True)
    for sta, _term in rows:
        recalculate_assignment(sta, today)
    await commit_or_raise(db)
    return ManualUpdateResponse(
        student_id=student_id,
        assignments_recalculated=len(rows),
        assignments=[_to_response(sta, term) for sta, term in rows],
    )


async def record_reminder(
    db: AsyncSession,
    tenant_id: UUID,
    assignment_id: UUID,
    today: Optional[date] = None,
) -> AssignmentResponse:
    """Count a reminder sent for an outstanding assignment. Sending is done elsewhere."""
    today = today or date.today()
    sta, term = await _get_assignment(db, tenant_id, assignment_id)
    if is_terminal(sta.term_fee_status) or sta.term_fee_status == FeeStatus.PAID.value:
        raise StateError(f"No reminder for a {sta.term_fee_status} assignment")
    sta.reminders_sent = (sta.reminders_sent or 0) + 1
    sta.last_reminder_date = today
    await commit_or_raise(db)
    return _to_response(sta, term)


async def get_student_assignments(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
) -> StudentAssignmentsResponse:
    student = await _get_student(db, tenant_id, student_id)
    rows = await _load_student_assignments(db, tenant_id, student_id)
    assignments = [_to_response(sta, term) for sta, term in rows]
    return StudentAssignmentsResponse(
        student_id=student.id,
        student_name=student.full_name,
        grade=student.grade,
        assignments=assignments,
        total_fee=round_money(sum((a.total_term_fee for a in assignments), ZERO)),
        total_paid=round_money(sum((a.paid_amount for a in assignments), ZERO)),
        total_pending=round_money(sum((a.pending_amount for a in assignments), ZERO)),
    )
