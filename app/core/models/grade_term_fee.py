"""Grade term fee: priced fee schedule for one (term, grade) pair."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid

from app.core.enums import FeeType
from app.db.session import Base

# Column name -> (fee type, display name, mandatory). Order is billing order.
FEE_COMPONENTS = (
    ("tuition_fee", FeeType.TUITION, "Tuition Fee", True),
    ("basic_fee", FeeType.BASIC, "Basic Fee", True),
    ("examination_fee", FeeType.EXAMINATION, "Examination Fee", True),
    ("transport_fee", FeeType.TRANSPORT, "Transport Fee", True),
    ("library_fee", FeeType.LIBRARY, "Library Fee", False),
    ("sports_fee", FeeType.SPORTS, "Sports Fee", False),
    ("activity_fee", FeeType.ACTIVITY, "Activity Fee", False),
    ("hostel_fee", FeeType.HOSTEL, "Hostel Fee", False),
    ("uniform_fee", FeeType.UNIFORM, "Uniform Fee", False),
    ("book_fee", FeeType.BOOKS, "Book Fee", False),
    ("other_fees", FeeType.OTHER, "Other Fees", False),
)
COMPONENT_FIELDS = tuple(c[0] for c in FEE_COMPONENTS)


class GradeTermFee(Base):
    """
    Fee schedule per grade per term. total_fee is never set directly: call
    recalculate_total() after changing any component.
    """

    __tablename__ = "grade_term_fees"
    __table_args__ = (
        UniqueConstraint("academic_term_id", "grade", name="uq_grade_term_fee_term_grade"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_term_id = Column(
        Uuid,
        ForeignKey("academic_terms.id", ondelete="RESTRICT"),
        nullable=False,
    )
    grade = Column(String(20), nullable=False)

    tuition_fee = Column(Numeric(12, 2), nullable=False, default=0)
    basic_fee = Column(Numeric(12, 2), nullable=False, default=0)
    examination_fee = Column(Numeric(12, 2), nullable=False, default=0)
    transport_fee = Column(Numeric(12, 2), nullable=False, default=0)
    library_fee = Column(Numeric(12, 2), nullable=False, default=0)
    sports_fee = Column(Numeric(12, 2), nullable=False, default=0)
    activity_fee = Column(Numeric(12, 2), nullable=False, default=0)
    hostel_fee = Column(Numeric(12, 2), nullable=False, default=0)
    uniform_fee = Column(Numeric(12, 2), nullable=False, default=0)
    book_fee = Column(Numeric(12, 2), nullable=False, default=0)
    other_fees = Column(Numeric(12, 2), nullable=False, default=0)
    total_fee = Column(Numeric(12, 2), nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Uuid, nullable=True)
    updated_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def component(self, field: str) -> Decimal:
        value = getattr(self, field)
        return Decimal("0") if value is None else Decimal(str(value))

    def recalculate_total(self) -> Decimal:
        self.total_fee = sum((self.component(f) for f in COMPONENT_FIELDS), Decimal("0"))
        return self.total_fee
