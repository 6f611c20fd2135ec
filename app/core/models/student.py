"""Student record as seen by billing: grade and transport mode drive which fees are billed."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid

from app.core.enums import StudentStatus
from app.db.session import Base


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint("tenant_id", "admission_number", name="uq_student_tenant_admission_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    admission_number = Column(String(50), nullable=False)
    full_name = Column(String(255), nullable=False)
    # Free text as entered by the school: "5", "Grade 5", "5-A"
    grade = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=StudentStatus.ACTIVE.value)
    transport_mode = Column(String(20), nullable=True)  # WALKING, SCHOOL_BUS, PRIVATE
    guardian_name = Column(String(255), nullable=True)
    guardian_phone = Column(String(50), nullable=True)
    guardian_email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
