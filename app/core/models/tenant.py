import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Uuid

from app.core.enums import TenantStatus
from app.db.session import Base


class Tenant(Base):
    """
    Tenant (school) in the multi-tenant platform.

    - id: Internal primary key. Every billing table carries it as tenant_id and
      every query filters on it.
    - organization_code: External/public human-readable identifier (e.g. SCH-A3K9).
      Accepted in the tenant header; never used as a foreign key.
    """

    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_code = Column(String(20), unique=True, nullable=False, index=True)
    organization_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=TenantStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
