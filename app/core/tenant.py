"""
Request-scoped tenant resolution.

The tenant comes from the tenant header (tenant UUID or organization code) or from
the access token's tenant_id claim. The resolved TenantContext is a FastAPI dependency
and is passed explicitly into every service call; nothing in the service layer reads
a global. current_tenant_var mirrors it for log records only and is reset when the
request finishes.
"""

import logging
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import TenantStatus
from app.core.exceptions import NotFoundError, ServiceError
from app.core.tenant_service import get_tenant_by_identifier
from app.db.session import get_db

logger = logging.getLogger(__name__)

current_tenant_var: ContextVar[Optional[str]] = ContextVar("current_tenant", default=None)


@dataclass(frozen=True)
class TenantContext:
    tenant_id: UUID
    organization_code: str


class TenantLogFilter(logging.Filter):
    """Adds `tenant` to every log record (\"-\" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant = current_tenant_var.get() or "-"
        return True


async def get_tenant_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Resolve and validate the tenant for this request; yields a TenantContext."""
    header_value = request.headers.get(settings.tenant_header)
    identifier = header_value.strip() if header_value and header_value.strip() else str(current_user.tenant_id)

    tenant = await get_tenant_by_identifier(db, identifier)
    if tenant is None:
        raise NotFoundError("Organization not found", code="TENANT_NOT_FOUND")
    if tenant.id != current_user.tenant_id:
        logger.warning(
            "Tenant header %s does not match token tenant %s", identifier, current_user.tenant_id
        )
        raise ServiceError(
            "Tenant does not match the authenticated user",
            status.HTTP_403_FORBIDDEN,
            code="TENANT_MISMATCH",
        )
    if tenant.status != TenantStatus.ACTIVE.value:
        raise ServiceError("Organization is not active", status.HTTP_403_FORBIDDEN, code="TENANT_INACTIVE")

    token = current_tenant_var.set(tenant.organization_code)
    try:
        yield TenantContext(tenant_id=tenant.id, organization_code=tenant.organization_code)
    finally:
        current_tenant_var.reset(token)
