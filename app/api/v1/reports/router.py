from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import check_permission
from app.core.tenant import TenantContext, get_tenant_context
from app.db.session import get_db

from .schemas import OverdueReportResponse, TermStatisticsResponse
from . import service

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


@router.get(
    "/terms/{term_id}/statistics",
    response_model=TermStatisticsResponse,
    dependencies=[Depends(check_permission("reports", "read"))],
)
async def term_statistics(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> TermStatisticsResponse:
    """Expected vs collected fees for a term, by status, grade and fee type."""
    return await service.term_statistics(db, tenant.tenant_id, term_id)


@router.get(
    "/overdue",
    response_model=OverdueReportResponse,
    dependencies=[Depends(check_permission("reports", "read"))],
)
async def overdue_report(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> OverdueReportResponse:
    """Students with fee items past due, largest amount first."""
    return await service.overdue_report(db, tenant.tenant_id)
