import uuid
from datetime import date, datetime, timedelta
from typing import List

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, JSON, String, UniqueConstraint, Uuid

from app.core.enums import TermStatus
from app.db.session import Base


class AcademicTerm(Base):
    """
    Billing period of an academic year (e.g. "Term 1" of "2026-2027").
    Only one term per tenant can be is_current = true.
    is_current is derived from today's date unless is_current_locked was set by an admin.
    CANCELLED is the soft delete; terms are never removed.
    """

    __tablename__ = "academic_terms"
    __table_args__ = (
        UniqueConstraint("tenant_id", "term_code", name="uq_academic_term_tenant_code"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)  # e.g. "Term 1"
    academic_year = Column(String(10), nullable=False, index=True)  # e.g. "2026-2027"
    term_code = Column(String(20), nullable=False)  # e.g. "TERM1-2026"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    fee_due_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default=TermStatus.UPCOMING.value)
    is_current = Column(Boolean, nullable=False, default=False)
    is_current_locked = Column(Boolean, nullable=False, default=False)
    # ISO dates, e.g. ["2026-04-01", "2026-04-02"]
    break_dates = Column(JSON, nullable=False, default=list)
    break_description = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @staticmethod
    def build_term_code(name: str, academic_year: str) -> str:
        year_part = academic_year.split("-")[0]
        return f"{name.replace(' ', '').upper()}-{year_part}"[:20]

    # --- Break days ---
    def get_break_dates(self) -> List[date]:
        return sorted(date.fromisoformat(d) for d in (self.break_dates or []))

    def set_break_dates(self, dates: List[date]) -> None:
        # New list object so SQLAlchemy sees the JSON column as changed
        self.break_dates = [d.isoformat() for d in sorted(set(dates))]

    def add_break_date(self, break_date: date) -> bool:
        current = self.get_break_dates()
        if break_date in current:
            return False
        self.set_break_dates(current + [break_date])
        return True

    def remove_break_date(self, break_date: date) -> bool:
        current = self.get_break_dates()
        if break_date not in current:
            return False
        current.remove(break_date)
        self.set_break_dates(current)
        return True

    def clear_break_dates(self) -> None:
        self.break_dates = []

    def is_break_date(self, day: date) -> bool:
        return day.isoformat() in (self.break_dates or [])

    def working_days(self) -> int:
        """Days in [start_date, end_date] excluding Saturdays, Sundays and break dates."""
        breaks = set(self.get_break_dates())
        count = 0
        day = self.start_date
        while day <= self.end_date:
            if day.weekday() < 5 and day not in breaks:
                count += 1
            day += timedelta(days=1)
        return count

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def default_due_date(self, default_due_days: int) -> date:
        return self.fee_due_date or self.start_date + timedelta(days=default_due_days)
