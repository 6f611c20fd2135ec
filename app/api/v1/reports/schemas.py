from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class GradeStatistics(BaseModel):
    grade: str
    student_count: int
    expected_fee: Decimal
    collected: Decimal
    pending: Decimal
    collection_rate: Decimal
    average_fee: Decimal


class TermStatisticsResponse(BaseModel):
    term_id: UUID
    term_name: str
    academic_year: str
    generated_at: datetime
    total_students: int
    billed_students: int
    unbilled_students: int
    total_expected_fee: Decimal
    total_collected: Decimal
    total_pending: Decimal
    total_overdue: Decimal
    collection_rate: Decimal
    average_fee_per_student: Decimal
    fee_status_distribution: Dict[str, int]
    grade_statistics: List[GradeStatistics]
    fee_type_distribution: Dict[str, Decimal]


class OverdueStudent(BaseModel):
    student_id: UUID
    student_name: str
    admission_number: str
    grade: Optional[str] = None
    total_overdue_amount: Decimal
    overdue_items_count: int
    earliest_due_date: date
    latest_due_date: date
    days_overdue: int
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    guardian_email: Optional[str] = None
    reminders_sent: int
    last_reminder_date: Optional[date] = None


class GradeOverdueSummary(BaseModel):
    grade: str
    student_count: int
    total_overdue_amount: Decimal
    average_overdue: Decimal


class TermOverdueSummary(BaseModel):
    term_id: UUID
    term_name: str
    academic_year: str
    student_count: int
    total_overdue_amount: Decimal


class OverdueReportResponse(BaseModel):
    generated_at: datetime
    as_of: date
    total_overdue_amount: Decimal
    total_students: int
    total_overdue_items: int
    average_overdue_per_student: Decimal
    students_with_high_overdue: int
    students_with_medium_overdue: int
    students_with_low_overdue: int
    students: List[OverdueStudent]
    grade_breakdown: List[GradeOverdueSummary]
    term_breakdown: List[TermOverdueSummary]
