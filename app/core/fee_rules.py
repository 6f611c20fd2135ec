"""
Fee rules: status derivation, assignment recalculation and payment allocation.

Pure functions over assignment/fee item objects (ORM instances or anything with the
same attributes). No database access here; services load the aggregates, call these
rules explicitly after every mutation and persist the result.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from app.core.enums import OUTSTANDING_STATUSES, TERMINAL_STATUSES, FeeStatus

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def round_money(val) -> Decimal:
    return to_decimal(val).quantize(_CENT, rounding=ROUND_HALF_UP)


def _status_value(status) -> str:
    return status.value if isinstance(status, FeeStatus) else status


def is_terminal(status) -> bool:
    return _status_value(status) in {s.value for s in TERMINAL_STATUSES}


def is_outstanding(status) -> bool:
    return _status_value(status) in {s.value for s in OUTSTANDING_STATUSES}


def derive_status(paid, total, due_date: Optional[date], today: date) -> FeeStatus:
    """PAID if paid >= total, PARTIAL if something paid, OVERDUE if nothing paid past due_date."""
    paid = to_decimal(paid)
    total = to_decimal(total)
    if paid >= total:
        return FeeStatus.PAID
    if paid > 0:
        return FeeStatus.PARTIAL
    if due_date is not None and today > due_date:
        return FeeStatus.OVERDUE
    return FeeStatus.PENDING


def recalculate_item(item, today: date) -> str:
    """Re-derive one fee item's status. CANCELLED/WAIVED items keep theirs."""
    if not is_terminal(item.status):
        item.status = derive_status(item.paid_amount, item.amount, item.due_date, today).value
    return item.status


def recalculate_assignment(assignment, today: date):
    """
    Recompute totals from fee_items and re-derive every status.

    total_term_fee = sum(amount), paid_amount = sum(paid_amount),
    pending_amount = max(0, total - paid). Idempotent: a second call with the same
    `today` changes nothing.
    """
    items = list(assignment.fee_items or [])
    for item in items:
        recalculate_item(item, today)

    total = round_money(sum((to_decimal(i.amount) for i in items), ZERO))
    paid = round_money(sum((to_decimal(i.paid_amount) for i in items), ZERO))
    pending = total - paid
    assignment.total_term_fee = total
    assignment.paid_amount = paid
    assignment.pending_amount = pending if pending > 0 else ZERO

    if not is_terminal(assignment.term_fee_status):
        assignment.term_fee_status = derive_status(paid, total, assignment.due_date, today).value
    return assignment


def apply_terminal_status(assignment, status: FeeStatus) -> List:
    """Administrative override (WAIVED/CANCELLED). Outstanding items follow; paid items stay PAID."""
    touched = []
    assignment.term_fee_status = status.value
    for item in assignment.fee_items or []:
        if is_outstanding(item.status):
            item.status = status.value
            touched.append(item)
    return touched


# --- Allocation ---
def allocation_order_key(item) -> Tuple[date, int]:
    """Oldest due date first, lowest id on ties. Items without a due date go last."""
    return (item.due_date or date.max, item.id if item.id is not None else 0)


@dataclass
class AllocationLine:
    item_id: int
    item_name: str
    fee_type: str
    assignment_id: object
    amount_applied: Decimal
    new_status: str
    remaining_balance: Decimal


@dataclass
class AllocationResult:
    amount: Decimal
    lines: List[AllocationLine] = field(default_factory=list)
    remaining_unapplied: Decimal = ZERO

    @property
    def total_applied(self) -> Decimal:
        return round_money(sum((line.amount_applied for line in self.lines), ZERO))


def allocate(items: Iterable, amount, today: date, result: Optional[AllocationResult] = None) -> AllocationResult:
    """
    Spread `amount` over `items` in the order given, paying each outstanding item up to
    its balance. Mutates paid_amount/status of touched items only.

    Amount conserving: result.total_applied + result.remaining_unapplied == amount.
    Pass an existing result to continue allocating a remainder over more items.
    """
    if result is None:
        result = AllocationResult(amount=round_money(amount), remaining_unapplied=round_money(amount))
    for item in items:
        if result.remaining_unapplied <= 0:
            break
        if not is_outstanding(item.status):
            continue
        balance = item.balance
        to_apply = min(result.remaining_unapplied, balance)
        if to_apply <= 0:
            continue
        item.paid_amount = round_money(to_decimal(item.paid_amount) + to_apply)
        recalculate_item(item, today)
        result.remaining_unapplied = round_money(result.remaining_unapplied - to_apply)
        result.lines.append(
            AllocationLine(
                item_id=item.id,
                item_name=item.item_name,
                fee_type=item.fee_type,
                assignment_id=item.assignment_id,
                amount_applied=round_money(to_apply),
                new_status=item.status,
                remaining_balance=item.balance,
            )
        )
    return result


def sort_for_allocation(items: Sequence) -> List:
    return sorted(items, key=allocation_order_key)


# --- Grade matching ---
def extract_numeric_grade(grade: Optional[str]) -> Optional[str]:
    """
    Normalise a grade label: "5-A" -> "5", "Grade 5" -> "5", "5th" -> "5".
    Labels without digits are returned stripped ("KG" -> "KG").
    """
    if grade is None or not grade.strip():
        return None
    clean = grade.strip()
    dash = clean.find("-")
    if dash > 0:
        return extract_numeric_grade(clean[:dash])
    if clean.lower().startswith("grade"):
        for part in clean.split():
            if part.isdigit():
                return part
    match = re.search(r"\d+", clean)
    return match.group(0) if match else clean


def grades_match(grade1: Optional[str], grade2: Optional[str]) -> bool:
    if grade1 is None or grade2 is None:
        return False
    if grade1.strip().lower() == grade2.strip().lower():
        return True
    n1 = extract_numeric_grade(grade1)
    n2 = extract_numeric_grade(grade2)
    return n1 is not None and n1 == n2
