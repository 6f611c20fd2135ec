from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ApplyPaymentRequest(BaseModel):
    """A payment received for a student, to be spread over outstanding fee items."""

    student_id: UUID
    amount: Decimal = Field(..., max_digits=12, decimal_places=2, description="Must be greater than 0")
    reference: Optional[str] = Field(None, max_length=100, description="Receipt / transaction reference")
    apply_to_future_terms: bool = Field(
        False,
        description="Pay term by term in start date order instead of by due date across all terms",
    )
    term_id: Optional[UUID] = Field(None, description="Restrict the payment to one term")


class AllocationLineResponse(BaseModel):
    item_id: int
    item_name: str
    fee_type: str
    term_id: UUID
    assignment_id: UUID
    amount_applied: Decimal
    new_status: str
    remaining_balance: Decimal


class PaymentResult(BaseModel):
    student_id: UUID
    amount: Decimal
    reference: Optional[str] = None
    payment_date: date
    allocations: List[AllocationLineResponse]
    total_applied: Decimal
    remaining_unapplied: Decimal
    overpayment: bool = Field(
        False,
        description="True when part of the amount could not be applied; it is not stored as credit",
    )
    all_paid: bool


class EligibilityResponse(BaseModel):
    student_id: UUID
    is_valid: bool
    has_term_assignments: bool
    term_assignment_count: int
    fee_item_count: int
    unpaid_fee_item_count: int
    total_pending_amount: Decimal
    error_code: str
    message: str


class BatchValidateRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1, max_length=1000)


class BatchValidateResponse(BaseModel):
    results: List[EligibilityResponse]
    eligible_count: int
    ineligible_count: int
