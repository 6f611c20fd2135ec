from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.tenant import TenantContext, get_tenant_context
from app.db.session import get_db

from .schemas import (
    AddFeeItemRequest,
    AssignmentResponse,
    AssignmentStatusRequest,
    AutoBillResponse,
    BillStudentRequest,
    ManualUpdateResponse,
    RegenerateBillRequest,
    StudentAssignmentsResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.post(
    "/bill",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def bill_student(
    payload: BillStudentRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "create")),
) -> AssignmentResponse:
    """Bill a student for a term from their grade's fee schedule. 409 ALREADY_BILLED on repeat."""
    return await service.bill_student(
        db, tenant.tenant_id, payload.student_id, payload.term_id, payload.notes, changed_by=current_user.id
    )


@router.post(
    "/terms/{term_id}/auto-bill",
    response_model=AutoBillResponse,
)
async def auto_bill_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "create")),
) -> AutoBillResponse:
    """Bill every active student of the school who has not been billed for this term yet."""
    return await service.auto_bill_term(db, tenant.tenant_id, term_id, changed_by=current_user.id)


@router.post(
    "/regenerate",
    response_model=AssignmentResponse,
)
async def regenerate_bill(
    payload: RegenerateBillRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "update")),
) -> AssignmentResponse:
    """Rebuild an unpaid bill from the current fee schedule."""
    return await service.regenerate_bill(
        db, tenant.tenant_id, payload.student_id, payload.term_id, changed_by=current_user.id
    )


@router.get(
    "/student/{student_id}",
    response_model=StudentAssignmentsResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_student_assignments(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> StudentAssignmentsResponse:
    return await service.get_student_assignments(db, tenant.tenant_id, student_id)


@router.post(
    "/student/{student_id}/manual-update",
    response_model=ManualUpdateResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def recalculate_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> ManualUpdateResponse:
    """Recalculate totals and statuses of all of a student's assignments."""
    return await service.recalculate_student(db, tenant.tenant_id, student_id)


@router.post(
    "/assignments/{assignment_id}/items",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_fee_item(
    assignment_id: UUID,
    payload: AddFeeItemRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "update")),
) -> AssignmentResponse:
    return await service.add_fee_item(db, tenant.tenant_id, assignment_id, payload, changed_by=current_user.id)


@router.delete(
    "/items/{item_id}",
    response_model=AssignmentResponse,
)
async def remove_fee_item(
    item_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "update")),
) -> AssignmentResponse:
    """Remove a manually added, unpaid fee item."""
    return await service.remove_fee_item(db, tenant.tenant_id, item_id, changed_by=current_user.id)


@router.post(
    "/assignments/{assignment_id}/status",
    response_model=AssignmentResponse,
)
async def set_assignment_status(
    assignment_id: UUID,
    payload: AssignmentStatusRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
    current_user: CurrentUser = Depends(check_permission("fees", "update")),
) -> AssignmentResponse:
    """Waive or cancel an assignment. Both are final."""
    return await service.set_assignment_status(
        db, tenant.tenant_id, assignment_id, payload.status, payload.reason, changed_by=current_user.id
    )


@router.post(
    "/assignments/{assignment_id}/reminders",
    response_model=AssignmentResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def record_reminder(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> AssignmentResponse:
    return await service.record_reminder(db, tenant.tenant_id, assignment_id)
