from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import FeeType


class BillStudentRequest(BaseModel):
    student_id: UUID
    term_id: UUID
    notes: Optional[str] = Field(None, max_length=500)


class RegenerateBillRequest(BaseModel):
    """Drop an unpaid bill and rebuild it from the current fee schedule."""

    student_id: UUID
    term_id: UUID


class AddFeeItemRequest(BaseModel):
    item_name: str = Field(..., min_length=1, max_length=100)
    fee_type: FeeType = FeeType.ADDITIONAL
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    due_date: Optional[date] = Field(None, description="Defaults to the assignment due date")
    is_mandatory: bool = True
    notes: Optional[str] = Field(None, max_length=500)


class AssignmentStatusRequest(BaseModel):
    status: Literal["WAIVED", "CANCELLED"]
    reason: Optional[str] = Field(None, max_length=500)


class TermFeeItemResponse(BaseModel):
    id: int
    assignment_id: UUID
    item_name: str
    fee_type: str
    amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    due_date: Optional[date] = None
    is_mandatory: bool
    is_auto_generated: bool
    sequence_order: int
    status: str
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class AssignmentResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    student_id: UUID
    academic_term_id: UUID
    term_name: Optional[str] = None
    academic_year: Optional[str] = None
    total_term_fee: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    term_fee_status: str
    is_billed: bool
    billing_date: Optional[date] = None
    due_date: Optional[date] = None
    last_payment_date: Optional[date] = None
    reminders_sent: int
    last_reminder_date: Optional[date] = None
    notes: Optional[str] = None
    version: int
    fee_items: List[TermFeeItemResponse] = []
    created_at: datetime
    updated_at: datetime


class StudentAssignmentsResponse(BaseModel):
    student_id: UUID
    student_name: str
    grade: Optional[str] = None
    assignments: List[AssignmentResponse]
    total_fee: Decimal
    total_paid: Decimal
    total_pending: Decimal


class AutoBillResponse(BaseModel):
    term_id: UUID
    billed_count: int
    skipped_count: int
    messages: List[str] = []


class ManualUpdateResponse(BaseModel):
    student_id: UUID
    assignments_recalculated: int
    assignments: List[AssignmentResponse]
