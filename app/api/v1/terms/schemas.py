from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


ACADEMIC_YEAR_PATTERN = r"^\d{4}-\d{4}$"


class TermCreate(BaseModel):
    """Create a term. Date ranges of non-cancelled terms in one academic year must not overlap."""

    name: str = Field(..., min_length=1, max_length=50, description="e.g. Term 1")
    academic_year: str = Field(..., pattern=ACADEMIC_YEAR_PATTERN, description="e.g. 2026-2027")
    start_date: date
    end_date: date = Field(..., description="Must be after start_date")
    fee_due_date: Optional[date] = Field(
        None,
        description="Due date for fee items billed in this term. Defaults to start_date + DEFAULT_DUE_DAYS.",
    )
    break_dates: List[date] = Field(default_factory=list, description="Holidays inside the term")
    break_description: Optional[str] = Field(None, max_length=500)
    is_current: bool = Field(False, description="Force this term as current (locks the flag)")


class TermUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    fee_due_date: Optional[date] = None
    break_description: Optional[str] = Field(None, max_length=500)


class TermPeriod(BaseModel):
    """One term of an academic year being initialized."""

    name: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: date
    fee_due_date: Optional[date] = None
    break_dates: List[date] = Field(default_factory=list)
    is_current: bool = False


class AcademicYearInitRequest(BaseModel):
    academic_year: str = Field(..., pattern=ACADEMIC_YEAR_PATTERN)
    periods: List[TermPeriod] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_single_current(self) -> "AcademicYearInitRequest":
        if sum(1 for p in self.periods if p.is_current) > 1:
            raise ValueError("Only one period can be marked is_current")
        return self


class TermResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    academic_year: str
    term_code: str
    start_date: date
    end_date: date
    fee_due_date: Optional[date] = None
    status: str
    is_current: bool
    is_current_locked: bool
    break_dates: List[date]
    break_description: Optional[str] = None
    working_days: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BreakDatesRequest(BaseModel):
    dates: List[date] = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=500)


class BreakDatesResponse(BaseModel):
    term_id: UUID
    break_dates: List[date]
    break_description: Optional[str] = None
    working_days: int
