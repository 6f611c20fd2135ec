"""Term fee item: one billable line of a student term assignment."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import relationship

from app.core.enums import FeeStatus
from app.db.session import Base


class TermFeeItem(Base):
    """Amount is a snapshot taken at billing time; later GradeTermFee edits do not touch it."""

    __tablename__ = "term_fee_items"

    # Integer identity: lowest id is the allocation tie-break
    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_id = Column(
        Uuid,
        ForeignKey("student_term_assignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_name = Column(String(100), nullable=False)
    fee_type = Column(String(30), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    due_date = Column(Date, nullable=True)
    is_mandatory = Column(Boolean, nullable=False, default=True)
    is_auto_generated = Column(Boolean, nullable=False, default=False)
    sequence_order = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=FeeStatus.PENDING.value)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    assignment = relationship("StudentTermAssignment", back_populates="fee_items")

    @property
    def balance(self) -> Decimal:
        """Outstanding amount, never negative."""
        remaining = Decimal(str(self.amount or 0)) - Decimal(str(self.paid_amount or 0))
        return remaining if remaining > 0 else Decimal("0")
