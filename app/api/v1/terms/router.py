from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import check_permission
from app.core.tenant import TenantContext, get_tenant_context
from app.db.session import get_db

from .schemas import (
    AcademicYearInitRequest,
    BreakDatesRequest,
    BreakDatesResponse,
    TermCreate,
    TermResponse,
    TermUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/terms", tags=["terms"])


@router.post(
    "",
    response_model=TermResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("terms", "create"))],
)
async def create_term(
    payload: TermCreate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> TermResponse:
    """Create a term. Rejects end_date <= start_date and overlaps within the academic year."""
    return await service.create_term(db, tenant.tenant_id, payload)


@router.post(
    "/initialize-year",
    response_model=List[TermResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("terms", "create"))],
)
async def initialize_academic_year(
    payload: AcademicYearInitRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> List[TermResponse]:
    """Create all terms of an academic year at once."""
    return await service.initialize_academic_year(db, tenant.tenant_id, payload)


@router.get(
    "",
    response_model=List[TermResponse],
    dependencies=[Depends(check_permission("terms", "read"))],
)
async def list_terms(
    academic_year: Optional[str] = Query(None, description="e.g. 2026-2027"),
    status_filter: Optional[str] = Query(None, description="UPCOMING, ACTIVE, COMPLETED, CANCELLED"),
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> List[TermResponse]:
    return await service.list_terms(db, tenant.tenant_id, academic_year=academic_year, status_filter=status_filter)


@router.get(
    "/current",
    response_model=Optional[TermResponse],
    dependencies=[Depends(check_permission("terms", "read"))],
)
async def get_current_term(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> Optional[TermResponse]:
    """Current term (is_current=true), or null when no term is running."""
    return await service.get_current_term(db, tenant.tenant_id)


@router.get(
    "/{term_id}",
    response_model=TermResponse,
    dependencies=[Depends(check_permission("terms", "read"))],
)
async def get_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> TermResponse:
    return await service.get_term(db, tenant.tenant_id, term_id)


@router.patch(
    "/{term_id}",
    response_model=TermResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def update_term(
    term_id: UUID,
    payload: TermUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> TermResponse:
    return await service.update_term(db, tenant.tenant_id, term_id, payload)


@router.post(
    "/{term_id}/cancel",
    response_model=TermResponse,
    dependencies=[Depends(check_permission("terms", "delete"))],
)
async def cancel_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> TermResponse:
    """Cancel (soft delete) a term."""
    return await service.cancel_term(db, tenant.tenant_id, term_id)


@router.post(
    "/{term_id}/set-current",
    response_model=TermResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def set_current_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> TermResponse:
    """Set this term as current. All other terms of the tenant become non-current."""
    return await service.set_current_term(db, tenant.tenant_id, term_id)


# --- Break days ---
@router.get(
    "/{term_id}/breaks",
    response_model=BreakDatesResponse,
    dependencies=[Depends(check_permission("terms", "read"))],
)
async def list_breaks(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> BreakDatesResponse:
    return await service.list_breaks(db, tenant.tenant_id, term_id)


@router.post(
    "/{term_id}/breaks",
    response_model=BreakDatesResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def add_break_dates(
    term_id: UUID,
    payload: BreakDatesRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> BreakDatesResponse:
    return await service.add_break_dates(db, tenant.tenant_id, term_id, payload.dates, payload.description)


@router.put(
    "/{term_id}/breaks",
    response_model=BreakDatesResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def replace_break_dates(
    term_id: UUID,
    payload: BreakDatesRequest,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> BreakDatesResponse:
    return await service.replace_break_dates(db, tenant.tenant_id, term_id, payload.dates, payload.description)


@router.delete(
    "/{term_id}/breaks",
    response_model=BreakDatesResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def clear_break_dates(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> BreakDatesResponse:
    return await service.clear_break_dates(db, tenant.tenant_id, term_id)


@router.delete(
    "/{term_id}/breaks/{break_date}",
    response_model=BreakDatesResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def remove_break_date(
    term_id: UUID,
    break_date: date,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context),
) -> BreakDatesResponse:
    return await service.remove_break_date(db, tenant.tenant_id, term_id, break_date)
