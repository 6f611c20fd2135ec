import logging
from datetime import date
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import log_fee_audit
from app.core.enums import OUTSTANDING_STATUSES, AuditAction, EligibilityCode
from app.core.exceptions import InvalidAmountError, NotFoundError, StateError, StudentNotFoundError
from app.core.fee_rules import (
    ZERO,
    AllocationResult,
    allocate,
    is_outstanding,
    is_terminal,
    recalculate_assignment,
    round_money,
    sort_for_allocation,
    to_decimal,
)
from app.core.models import AcademicTerm, Student, StudentTermAssignment, TermFeeItem
from app.db.transaction import commit_or_raise

from .schemas import (
    AllocationLineResponse,
    ApplyPaymentRequest,
    BatchValidateResponse,
    EligibilityResponse,
    PaymentResult,
)

logger = logging.getLogger(__name__)

_OUTSTANDING_VALUES = [s.value for s in OUTSTANDING_STATUSES]

ELIGIBILITY_MESSAGES = {
    EligibilityCode.NO_TERM_ASSIGNMENTS: "Student has no term assignments",
    EligibilityCode.NO_FEE_ITEMS: "Student's term assignments have no fee items",
    EligibilityCode.NO_UNPAID_ITEMS: "All fee items are paid",
    EligibilityCode.ELIGIBLE: "Student has outstanding fee items",
}


async def _get_student(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> Student:
    result = await db.execute(
        select(Student).where(Student.id == student_id, Student.tenant_id == tenant_id)
    )
    student = result.scalar_one_or_none()
    if not student:
        raise StudentNotFoundError("Student not found")
    return student


# --- Payment allocation ---
async def apply_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payload: ApplyPaymentRequest,
    changed_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> PaymentResult:
    """
    Spread a payment over the student's outstanding fee items, oldest due date first
    (lowest item id on ties).

    Every billed assignment is payable, including terms that have not started yet, so a
    student reported ELIGIBLE always has somewhere for the money to go. With
    apply_to_future_terms the items are paid term by term instead, earliest start date
    first. WAIVED/CANCELLED assignments never receive money. Having nothing outstanding
    is not an error: the whole amount comes back as remaining_unapplied with overpayment=true.

    Assignment rows are locked for the whole allocation and the change is committed once.
    """
    today = today or date.today()
    amount = round_money(payload.amount)
    if amount <= 0:
        raise InvalidAmountError("Payment amount must be greater than 0")
    await _get_student(db, tenant_id, payload.student_id)

    result = await db.execute(
        select(StudentTermAssignment, AcademicTerm)
        .join(AcademicTerm, AcademicTerm.id == StudentTermAssignment.academic_term_id)
        .where(
            StudentTermAssignment.tenant_id == tenant_id,
            StudentTermAssignment.student_id == payload.student_id,
        )
        .order_by(AcademicTerm.start_date, AcademicTerm.id)
        .with_for_update(of=StudentTermAssignment)
        .execution_options(populate_existing=True)
    )
    rows = [(row[0], row[1]) for row in result.all()]

    if payload.term_id is not None:
        rows = [(sta, term) for sta, term in rows if term.id == payload.term_id]
        if not rows:
            raise NotFoundError("Student has not been billed for this term")
        sta = rows[0][0]
        if is_terminal(sta.term_fee_status):
            raise StateError(f"Cannot apply a payment to a {sta.term_fee_status} assignment")

    payable = [(sta, term) for sta, term in rows if not is_terminal(sta.term_fee_status)]
    term_by_assignment: Dict[UUID, UUID] = {sta.id: term.id for sta, term in payable}
    before = {sta.id: round_money(sta.paid_amount) for sta, _ in payable}

    if payload.term_id is None and payload.apply_to_future_terms:
        # rows are in start date order: one phase per term
        phases = [[sta] for sta, _ in payable]
    else:
        phases = [[sta for sta, _ in payable]]

    allocation = AllocationResult(amount=amount, remaining_unapplied=amount)
    for phase in phases:
        items = sort_for_allocation([i for sta in phase for i in sta.fee_items])
        allocate(items, amount, today, result=allocation)

    touched_ids = {line.assignment_id for line in allocation.lines}
    for sta, _term in payable:
        if sta.id not in touched_ids:
            continue
        recalculate_assignment(sta, today)
        sta.last_payment_date = today
        await log_fee_audit(
            db,
            tenant_id,
            "student_term_assignments",
            sta.id,
            AuditAction.PAYMENT.value,
            {"paid_amount": str(before[sta.id])},
            {
                "paid_amount": str(round_money(sta.paid_amount)),
                "term_fee_status": sta.term_fee_status,
                "reference": payload.reference,
                "applied": str(
                    round_money(
                        sum((line.amount_applied for line in allocation.lines if line.assignment_id == sta.id), ZERO)
                    )
                ),
            },
            changed_by,
        )

    if touched_ids:
        await commit_or_raise(db, "Fee records changed while applying the payment; retry")

    all_paid = bool(payable) and not any(
        is_outstanding(item.status) for sta, _ in payable for item in sta.fee_items
    )
    logger.info(
        "Payment %s for student %s: amount=%s applied=%s unapplied=%s items=%d",
        payload.reference or "-",
        payload.student_id,
        amount,
        allocation.total_applied,
        allocation.remaining_unapplied,
        len(allocation.lines),
    )
    return PaymentResult(
        student_id=payload.student_id,
        amount=amount,
        reference=payload.reference,
        payment_date=today,
        allocations=[
            AllocationLineResponse(
                item_id=line.item_id,
                item_name=line.item_name,
                fee_type=line.fee_type,
                term_id=term_by_assignment[line.assignment_id],
                assignment_id=line.assignment_id,
                amount_applied=line.amount_applied,
                new_status=line.new_status,
                remaining_balance=line.remaining_balance,
            )
            for line in allocation.lines
        ],
        total_applied=allocation.total_applied,
        remaining_unapplied=allocation.remaining_unapplied,
        overpayment=allocation.remaining_unapplied > 0,
        all_paid=all_paid,
    )


# --- Eligibility ---
def _classify(
    student_id: UUID,
    assignment_count: int,
    item_count: int,
    unpaid_count: int,
    pending_amount,
) -> EligibilityResponse:
    if assignment_count == 0:
        code = EligibilityCode.NO_TERM_ASSIGNMENTS
    elif item_count == 0:
        code = EligibilityCode.NO_FEE_ITEMS
    elif unpaid_count == 0:
        code = EligibilityCode.NO_UNPAID_ITEMS
    else:
        code = EligibilityCode.ELIGIBLE
    return EligibilityResponse(
        student_id=student_id,
        is_valid=code == EligibilityCode.ELIGIBLE,
        has_term_assignments=assignment_count > 0,
        term_assignment_count=assignment_count,
        fee_item_count=item_count,
        unpaid_fee_item_count=unpaid_count,
        total_pending_amount=round_money(pending_amount),
        error_code=code.value,
        message=ELIGIBILITY_MESSAGES[code],
    )


async def _eligibility_counts(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: Sequence[UUID],
) -> Dict[UUID, EligibilityResponse]:
    """Assignment/item counts for many students in one grouped query."""
    outstanding = TermFeeItem.status.in_(_OUTSTANDING_VALUES)
    stmt = (
        select(
            StudentTermAssignment.student_id,
            func.count(distinct(StudentTermAssignment.id)),
            func.count(TermFeeItem.id),
            func.coalesce(func.sum(case((outstanding, 1), else_=0)), 0),
            func.coalesce(
                func.sum(case((outstanding, TermFeeItem.amount - TermFeeItem.paid_amount), else_=0)),
                0,
            ),
        )
        .outerjoin(TermFeeItem, TermFeeItem.assignment_id == StudentTermAssignment.id)
        .where(
            StudentTermAssignment.tenant_id == tenant_id,
            StudentTermAssignment.student_id.in_(list(student_ids)),
        )
        .group_by(StudentTermAssignment.student_id)
    )
    result = await db.execute(stmt)
    out: Dict[UUID, EligibilityResponse] = {}
    for student_id, assignment_count, item_count, unpaid_count, pending in result.all():
        out[student_id] = _classify(
            student_id,
            int(assignment_count or 0),
            int(item_count or 0),
            int(unpaid_count or 0),
            to_decimal(pending),
        )
    return out


async def validate_for_payment(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
) -> EligibilityResponse:
    """Can this student receive a payment? Returns the decision, never raises for ineligible students."""
    await _get_student(db, tenant_id, student_id)
    counts = await _eligibility_counts(db, tenant_id, [student_id])
    return counts.get(student_id) or _classify(student_id, 0, 0, 0, ZERO)


async def batch_validate(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: List[UUID],
) -> BatchValidateResponse:
    """Same classification as validate_for_payment for many students, in one round trip."""
    unique_ids = list(dict.fromkeys(student_ids))
    counts = await _eligibility_counts(db, tenant_id, unique_ids)
    results: List[EligibilityResponse] = [
        counts.get(sid) or _classify(sid, 0, 0, 0, ZERO) for sid in unique_ids
    ]
    eligible = sum(1 for r in results if r.is_valid)
    return BatchValidateResponse(
        results=results,
        eligible_count=eligible,
        ineligible_count=len(results) - eligible,
    )
