"""Student term assignment: one student's bill for one term, made of term fee items."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.core.enums import FeeStatus
from app.db.session import Base


class StudentTermAssignment(Base):
    """
    Per-student per-term ledger. total_term_fee, paid_amount, pending_amount and
    term_fee_status are derived from fee_items by fee_rules.recalculate_assignment();
    never assign them directly. version guards against lost updates from concurrent payments.
    """

    __tablename__ = "student_term_assignments"
    __table_args__ = (
        UniqueConstraint("student_id", "academic_term_id", name="uq_student_term_assignment"),
        Index("idx_sta_term_status", "academic_term_id", "term_fee_status"),
        Index("idx_sta_due_date", "due_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_term_id = Column(
        Uuid,
        ForeignKey("academic_terms.id", ondelete="RESTRICT"),
        nullable=False,
    )

    total_term_fee = Column(Numeric(12, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    pending_amount = Column(Numeric(12, 2), nullable=False, default=0)
    term_fee_status = Column(String(20), nullable=False, default=FeeStatus.PENDING.value)

    is_billed = Column(Boolean, nullable=False, default=False)
    billing_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    last_payment_date = Column(Date, nullable=True)
    reminders_sent = Column(Integer, nullable=False, default=0)
    last_reminder_date = Column(Date, nullable=True)
    notes = Column(String(500), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Owned collection, always loaded with the assignment
    fee_items = relationship(
        "TermFeeItem",
        back_populates="assignment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TermFeeItem.id",
    )

    __mapper_args__ = {"version_id_col": version}
