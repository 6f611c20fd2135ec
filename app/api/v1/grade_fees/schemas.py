from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class GradeFeeUpsert(BaseModel):
    """Full fee schedule of one grade for one term. Omitted components are stored as 0."""

    tuition_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    basic_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    examination_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    transport_fee: Decimal = Field(
        Decimal("0"),
        ge=0,
        max_digits=12,
        decimal_places=2,
        description="Billed only to students using school transport",
    )
    library_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    sports_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    activity_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    hostel_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    uniform_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    book_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    other_fees: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    is_active: bool = True


class GradeFeeActiveUpdate(BaseModel):
    is_active: bool


class GradeFeeResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    academic_term_id: UUID
    grade: str
    tuition_fee: Decimal
    basic_fee: Decimal
    examination_fee: Decimal
    transport_fee: Decimal
    library_fee: Decimal
    sports_fee: Decimal
    activity_fee: Decimal
    hostel_fee: Decimal
    uniform_fee: Decimal
    book_fee: Decimal
    other_fees: Decimal
    total_fee: Decimal
    is_active: bool
    created_by: Optional[UUID] = None
    updated_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
