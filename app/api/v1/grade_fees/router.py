from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.tenant import TenantContext, get_tenant_context
from app.db.session import get_db

from .schemas import GradeFeeActiveUpdate, GradeFeeResponse, GradeFeeUpsert
from . import service

router = APIRouter(prefix="/api/v1/grade-fees", tags=["grade-fees"])


@router.put(
    "/{term_id}/{grade}",
    response_model=GradeFeeResponse,
)
async def define_grade_fee(
    term_id: UUID,
    grade: str,
    payload: GradeFeeUpsert,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "create")),
) -> GradeFeeResponse:
    """Create or replace a grade's fee schedule for a term."""
    return await service.define_grade_fee(
        db, tenant.tenant_id, term_id, grade, payload, changed_by=current_user.id
    )


@router.get(
    "/{term_id}",
    response_model=List[GradeFeeResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_grade_fees(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> List[GradeFeeResponse]:
    return await service.list_grade_fees(db, tenant.tenant_id, term_id)


@router.get(
    "/{term_id}/{grade}",
    response_model=GradeFeeResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_grade_fee(
    term_id: UUID,
    grade: str,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> GradeFeeResponse:
    return await service.get_grade_fee(db, tenant.tenant_id, term_id, grade)


@router.patch(
    "/{term_id}/{grade}/active",
    response_model=GradeFeeResponse,
)
async def set_grade_fee_active(
    term_id: UUID,
    grade: str,
    payload: GradeFeeActiveUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "update")),
) -> GradeFeeResponse:
    """Activate or deactivate a fee schedule. Inactive schedules are not used for billing."""
    return await service.set_grade_fee_active(
        db, tenant.tenant_id, term_id, grade, payload.is_active, changed_by=current_user.id
    )
