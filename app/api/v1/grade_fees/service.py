import logging
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import log_fee_audit
from app.core.enums import AuditAction, TermStatus
from app.core.exceptions import NotFoundError, StateError, ValidationError
from app.core.fee_rules import grades_match, round_money
from app.core.models import AcademicTerm, GradeTermFee
from app.core.models.grade_term_fee import COMPONENT_FIELDS
from app.db.transaction import commit_or_raise, flush_or_raise

from .schemas import GradeFeeResponse, GradeFeeUpsert

logger = logging.getLogger(__name__)


def _to_response(gtf: GradeTermFee) -> GradeFeeResponse:
    return GradeFeeResponse.model_validate(gtf)


def _components_snapshot(gtf: GradeTermFee) -> dict:
    snapshot = {f: str(gtf.component(f)) for f in COMPONENT_FIELDS}
    snapshot["total_fee"] = str(round_money(gtf.total_fee))
    snapshot["is_active"] = gtf.is_active
    return snapshot


async def _get_term(db: AsyncSession, tenant_id: UUID, term_id: UUID) -> AcademicTerm:
    result = await db.execute(
        select(AcademicTerm).where(
            AcademicTerm.id == term_id,
            AcademicTerm.tenant_id == tenant_id,
        )
    )
    term = result.scalar_one_or_none()
    if not term:
        raise NotFoundError("Term not found")
    return term


def match_grade_fee(schedules: Sequence[GradeTermFee], grade: str) -> Optional[GradeTermFee]:
    wanted = grade.strip().lower()
    for gtf in schedules:
        if gtf.grade.strip().lower() == wanted:
            return gtf
    for gtf in schedules:
        if grades_match(gtf.grade, grade):
            return gtf
    return None


async def find_grade_fee(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    grade: str,
    active_only: bool = False,
) -> Optional[GradeTermFee]:
    """
    Fee schedule for a grade in a term. Exact label first, then a tolerant match
    ("Grade 5", "5-A" and "5" are the same grade).
    """
    stmt = select(GradeTermFee).where(
        GradeTermFee.tenant_id == tenant_id,
        GradeTermFee.academic_term_id == term_id,
    )
    if active_only:
        stmt = stmt.where(GradeTermFee.is_active.is_(True))
    result = await db.execute(stmt.order_by(GradeTermFee.grade))
    return match_grade_fee(result.scalars().all(), grade)


async def define_grade_fee(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    grade: str,
    payload: GradeFeeUpsert,
    changed_by: Optional[UUID] = None,
) -> GradeFeeResponse:
    """
    Create or replace the fee schedule of (term, grade). The grade is matched tolerantly, so
    "Grade 5" updates the schedule stored as "5". total_fee is recomputed from the components.
    """
    grade = grade.strip()
    if not grade:
        raise ValidationError("grade is required")
    term = await _get_term(db, tenant_id, term_id)
    if term.status == TermStatus.CANCELLED.value:
        raise StateError("Cannot define fees for a cancelled term")

    # "5" and "Grade 5" share one schedule; an existing row keeps its label
    gtf = await find_grade_fee(db, tenant_id, term_id, grade)
    old_value = _components_snapshot(gtf) if gtf else None
    if gtf is None:
        gtf = GradeTermFee(
            tenant_id=tenant_id,
            academic_term_id=term_id,
            grade=grade,
            created_by=changed_by,
        )
        db.add(gtf)
    for field in COMPONENT_FIELDS:
        setattr(gtf, field, round_money(getattr(payload, field)))
    gtf.is_active = payload.is_active
    gtf.updated_by = changed_by
    gtf.recalculate_total()

    await flush_or_raise(db, f"Fee schedule for grade '{grade}' was modified concurrently")
    await log_fee_audit(
        db,
        tenant_id,
        "grade_term_fees",
        gtf.id,
        AuditAction.UPDATE.value if old_value else AuditAction.CREATE.value,
        old_value,
        _components_snapshot(gtf),
        changed_by,
    )
    await commit_or_raise(db, f"Fee schedule for grade '{grade}' was modified concurrently")
    await db.refresh(gtf)
    logger.info("Fee schedule %s for grade %s in term %s: total=%s", gtf.id, grade, term.term_code, gtf.total_fee)
    return _to_response(gtf)


async def list_grade_fees(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
) -> List[GradeFeeResponse]:
    await _get_term(db, tenant_id, term_id)
    result = await db.execute(
        select(GradeTermFee)
        .where(
            GradeTermFee.tenant_id == tenant_id,
            GradeTermFee.academic_term_id == term_id,
        )
        .order_by(GradeTermFee.grade)
    )
    return [_to_response(g) for g in result.scalars().all()]


async def get_grade_fee(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    grade: str,
) -> GradeFeeResponse:
    await _get_term(db, tenant_id, term_id)
    gtf = await find_grade_fee(db, tenant_id, term_id, grade)
    if not gtf:
        raise NotFoundError(f"No fee schedule for grade '{grade}' in this term")
    return _to_response(gtf)


async def set_grade_fee_active(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    grade: str,
    is_active: bool,
    changed_by: Optional[UUID] = None,
) -> GradeFeeResponse:
    """Inactive schedules are ignored by billing; existing bills are not touched."""
    await _get_term(db, tenant_id, term_id)
    gtf = await find_grade_fee(db, tenant_id, term_id, grade)
    if not gtf:
        raise NotFoundError(f"No fee schedule for grade '{grade}' in this term")
    if gtf.is_active != is_active:
        gtf.is_active = is_active
        gtf.updated_by = changed_by
        await log_fee_audit(
            db,
            tenant_id,
            "grade_term_fees",
            gtf.id,
            AuditAction.UPDATE.value,
            {"is_active": not is_active},
            {"is_active": is_active},
            changed_by,
        )
        await commit_or_raise(db)
        await db.refresh(gtf)
    return _to_response(gtf)
