from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.tenant import TenantContext, get_tenant_context
from app.db.session import get_db

from .schemas import (
    ApplyPaymentRequest,
    BatchValidateRequest,
    BatchValidateResponse,
    EligibilityResponse,
    PaymentResult,
)
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post(
    "/apply",
    response_model=PaymentResult,
)
async def apply_payment(
    payload: ApplyPaymentRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("payments", "create")),
) -> PaymentResult:
    """Apply a received payment to the student's outstanding fee items, oldest due first."""
    return await service.apply_payment(db, tenant.tenant_id, payload, changed_by=current_user.id)


@router.get(
    "/validate/{student_id}",
    response_model=EligibilityResponse,
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def validate_for_payment(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> EligibilityResponse:
    return await service.validate_for_payment(db, tenant.tenant_id, student_id)


@router.post(
    "/validate/batch",
    response_model=BatchValidateResponse,
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def batch_validate(
    payload: BatchValidateRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> BatchValidateResponse:
    """Payment eligibility for many students at once."""
    return await service.batch_validate(db, tenant.tenant_id, payload.student_ids)
