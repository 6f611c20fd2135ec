import logging
from datetime import date
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import TermStatus
from app.core.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from app.core.models import AcademicTerm
from app.db.transaction import commit_or_raise

from .schemas import (
    AcademicYearInitRequest,
    BreakDatesResponse,
    TermCreate,
    TermResponse,
    TermUpdate,
)

logger = logging.getLogger(__name__)


def _to_response(term: AcademicTerm) -> TermResponse:
    return TermResponse(
        id=term.id,
        tenant_id=term.tenant_id,
        name=term.name,
        academic_year=term.academic_year,
        term_code=term.term_code,
        start_date=term.start_date,
        end_date=term.end_date,
        fee_due_date=term.fee_due_date,
        status=term.status,
        is_current=term.is_current,
        is_current_locked=term.is_current_locked,
        break_dates=term.get_break_dates(),
        break_description=term.break_description,
        working_days=term.working_days(),
        created_at=term.created_at,
        updated_at=term.updated_at,
    )


def _to_breaks_response(term: AcademicTerm) -> BreakDatesResponse:
    return BreakDatesResponse(
        term_id=term.id,
        break_dates=term.get_break_dates(),
        break_description=term.break_description,
        working_days=term.working_days(),
    )


def _validate_dates(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise ValidationError("end_date must be after start_date")


def _validate_break_dates(start_date: date, end_date: date, break_dates: Iterable[date]) -> None:
    outside = sorted(d for d in break_dates if not start_date <= d <= end_date)
    if outside:
        raise ValidationError(
            f"Break date {outside[0].isoformat()} is outside the term ({start_date.isoformat()} - {end_date.isoformat()})"
        )


def _derive_status(term: AcademicTerm, today: date) -> str:
    if term.status == TermStatus.CANCELLED.value:
        return term.status
    if term.contains(today):
        return TermStatus.ACTIVE.value
    if term.end_date < today:
        return TermStatus.COMPLETED.value
    return TermStatus.UPCOMING.value


def _apply_term_statuses(terms: List[AcademicTerm], today: date) -> bool:
    """
    Re-derive status and is_current for all terms of a tenant. Returns True if anything changed.

    A locked current term (set by an admin) stays current and ACTIVE until another term is
    set current or it is cancelled; otherwise the non-cancelled term containing today is
    current, or none.
    """
    locked = next(
        (
            t
            for t in terms
            if t.is_current
            and t.is_current_locked
            and t.status != TermStatus.CANCELLED.value
        ),
        None,
    )
    current = locked
    if current is None:
        current = next(
            (
                t
                for t in sorted(terms, key=lambda t: t.start_date)
                if t.status != TermStatus.CANCELLED.value and t.contains(today)
            ),
            None,
        )

    changed = False
    for term in terms:
        status = TermStatus.ACTIVE.value if term is locked else _derive_status(term, today)
        is_current = term is current
        is_locked = term is locked
        if (term.status, term.is_current, term.is_current_locked) != (status, is_current, is_locked):
            term.status = status
            term.is_current = is_current
            term.is_current_locked = is_locked
            changed = True
    return changed


async def _load_terms(db: AsyncSession, tenant_id: UUID) -> List[AcademicTerm]:
    result = await db.execute(
        select(AcademicTerm)
        .where(AcademicTerm.tenant_id == tenant_id)
        .order_by(AcademicTerm.start_date)
    )
    return list(result.scalars().all())


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


async def _check_overlap(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: str,
    start_date: date,
    end_date: date,
    exclude_id: Optional[UUID] = None,
) -> None:
    stmt = select(AcademicTerm).where(
        AcademicTerm.tenant_id == tenant_id,
        AcademicTerm.academic_year == academic_year,
        AcademicTerm.status != TermStatus.CANCELLED.value,
        AcademicTerm.start_date <= end_date,
        AcademicTerm.end_date >= start_date,
    )
    if exclude_id is not None:
        stmt = stmt.where(AcademicTerm.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    clash = result.scalar_one_or_none()
    if clash:
        raise ValidationError(
            f"Term dates overlap with '{clash.name}' ({clash.start_date.isoformat()} - {clash.end_date.isoformat()})"
        )


async def _ensure_unique_code(
    db: AsyncSession,
    tenant_id: UUID,
    term_code: str,
    exclude_id: Optional[UUID] = None,
) -> None:
    stmt = select(AcademicTerm.id).where(
        AcademicTerm.tenant_id == tenant_id,
        AcademicTerm.term_code == term_code,
    )
    if exclude_id is not None:
        stmt = stmt.where(AcademicTerm.id != exclude_id)
    result = await db.execute(stmt)
    if result.first():
        raise ConflictError(f"Term with code '{term_code}' already exists")


async def refresh_term_statuses(
    db: AsyncSession,
    tenant_id: UUID,
    today: Optional[date] = None,
) -> List[AcademicTerm]:
    """Recompute status/is_current of every term of the tenant; commits only when something changed."""
    today = today or date.today()
    terms = await _load_terms(db, tenant_id)
    if _apply_term_statuses(terms, today):
        await commit_or_raise(db)
    return terms


async def create_term(
    db: AsyncSession,
    tenant_id: UUID,
    payload: TermCreate,
    today: Optional[date] = None,
) -> TermResponse:
    """Create a term. is_current=true makes it the locked current term."""
    today = today or date.today()
    _validate_dates(payload.start_date, payload.end_date)
    _validate_break_dates(payload.start_date, payload.end_date, payload.break_dates)
    await _check_overlap(db, tenant_id, payload.academic_year, payload.start_date, payload.end_date)

    name = payload.name.strip()
    term_code = AcademicTerm.build_term_code(name, payload.academic_year)
    await _ensure_unique_code(db, tenant_id, term_code)

    terms = await _load_terms(db, tenant_id)
    if payload.is_current:
        for other in terms:
            other.is_current = False
            other.is_current_locked = False
    term = AcademicTerm(
        tenant_id=tenant_id,
        name=name,
        academic_year=payload.academic_year,
        term_code=term_code,
        start_date=payload.start_date,
        end_date=payload.end_date,
        fee_due_date=payload.fee_due_date,
        status=TermStatus.UPCOMING.value,
        is_current=payload.is_current,
        is_current_locked=payload.is_current,
        break_description=payload.break_description,
    )
    term.set_break_dates(payload.break_dates)
    db.add(term)
    _apply_term_statuses(terms + [term], today)
    await commit_or_raise(db, f"Term with code '{term_code}' already exists")
    await db.refresh(term)
    logger.info("Created term %s (%s) status=%s current=%s", term.term_code, term.id, term.status, term.is_current)
    return _to_response(term)


async def initialize_academic_year(
    db: AsyncSession,
    tenant_id: UUID,
    payload: AcademicYearInitRequest,
    today: Optional[date] = None,
) -> List[TermResponse]:
    """
    Create every term of an academic year in one transaction.
    The period flagged is_current becomes the locked current term; otherwise current is date-derived.
    """
    today = today or date.today()
    existing = await db.execute(
        select(AcademicTerm.id).where(
            AcademicTerm.tenant_id == tenant_id,
            AcademicTerm.academic_year == payload.academic_year,
            AcademicTerm.status != TermStatus.CANCELLED.value,
        )
    )
    if existing.first():
        raise ConflictError(f"Academic year {payload.academic_year} is already initialized")

    periods = sorted(payload.periods, key=lambda p: p.start_date)
    for period in periods:
        _validate_dates(period.start_date, period.end_date)
        _validate_break_dates(period.start_date, period.end_date, period.break_dates)
    for prev, nxt in zip(periods, periods[1:]):
        if nxt.start_date <= prev.end_date:
            raise ValidationError(f"Periods '{prev.name}' and '{nxt.name}' overlap")
    codes = [AcademicTerm.build_term_code(p.name.strip(), payload.academic_year) for p in periods]
    if len(set(codes)) != len(codes):
        raise ValidationError("Period names must be unique within the academic year")
    for code in codes:
        await _ensure_unique_code(db, tenant_id, code)

    terms = await _load_terms(db, tenant_id)
    forced = any(p.is_current for p in periods)
    if forced:
        for other in terms:
            other.is_current = False
            other.is_current_locked = False

    created: List[AcademicTerm] = []
    for period, code in zip(periods, codes):
        term = AcademicTerm(
            tenant_id=tenant_id,
            name=period.name.strip(),
            academic_year=payload.academic_year,
            term_code=code,
            start_date=period.start_date,
            end_date=period.end_date,
            fee_due_date=period.fee_due_date,
            status=TermStatus.UPCOMING.value,
            is_current=period.is_current,
            is_current_locked=period.is_current,
        )
        term.set_break_dates(period.break_dates)
        db.add(term)
        created.append(term)

    _apply_term_statuses(terms + created, today)
    await commit_or_raise(db)
    for term in created:
        await db.refresh(term)
    logger.info("Initialized academic year %s with %d terms", payload.academic_year, len(created))
    return [_to_response(t) for t in created]


async def list_terms(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: Optional[str] = None,
    status_filter: Optional[str] = None,
    today: Optional[date] = None,
) -> List[TermResponse]:
    terms = await refresh_term_statuses(db, tenant_id, today)
    if academic_year:
        terms = [t for t in terms if t.academic_year == academic_year]
    if status_filter:
        terms = [t for t in terms if t.status == status_filter]
    return [_to_response(t) for t in terms]


async def get_term(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    today: Optional[date] = None,
) -> TermResponse:
    await refresh_term_statuses(db, tenant_id, today)
    term = await _get_term(db, tenant_id, term_id)
    return _to_response(term)


async def get_current_term(
    db: AsyncSession,
    tenant_id: UUID,
    today: Optional[date] = None,
) -> Optional[TermResponse]:
    terms = await refresh_term_statuses(db, tenant_id, today)
    current = next((t for t in terms if t.is_current), None)
    return _to_response(current) if current else None


async def update_term(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    payload: TermUpdate,
    today: Optional[date] = None,
) -> TermResponse:
    """Partial update; dates are re-validated against the other terms of the same academic year."""
    today = today or date.today()
    term = await _get_term(db, tenant_id, term_id)
    if term.status == TermStatus.CANCELLED.value:
        raise StateError("Cannot update a cancelled term")

    start_date = payload.start_date or term.start_date
    end_date = payload.end_date or term.end_date
    if payload.start_date is not None or payload.end_date is not None:
        _validate_dates(start_date, end_date)
        _validate_break_dates(start_date, end_date, term.get_break_dates())
        await _check_overlap(db, tenant_id, term.academic_year, start_date, end_date, exclude_id=term.id)
        term.start_date = start_date
        term.end_date = end_date
    if payload.name is not None and payload.name.strip() != term.name:
        term_code = AcademicTerm.build_term_code(payload.name.strip(), term.academic_year)
        await _ensure_unique_code(db, tenant_id, term_code, exclude_id=term.id)
        term.name = payload.name.strip()
        term.term_code = term_code
    if payload.fee_due_date is not None:
        term.fee_due_date = payload.fee_due_date
    if payload.break_description is not None:
        term.break_description = payload.break_description

    terms = await _load_terms(db, tenant_id)
    _apply_term_statuses(terms, today)
    await commit_or_raise(db)
    await db.refresh(term)
    return _to_response(term)


async def cancel_term(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    today: Optional[date] = None,
) -> TermResponse:
    """Soft delete: status CANCELLED, never current again."""
    today = today or date.today()
    term = await _get_term(db, tenant_id, term_id)
    if term.status == TermStatus.CANCELLED.value:
        raise StateError("Term is already cancelled")
    term.status = TermStatus.CANCELLED.value
    term.is_current = False
    term.is_current_locked = False
    terms = await _load_terms(db, tenant_id)
    _apply_term_statuses(terms, today)
    await commit_or_raise(db)
    await db.refresh(term)
    logger.info("Cancelled term %s (%s)", term.term_code, term.id)
    return _to_response(term)


async def set_current_term(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    today: Optional[date] = None,
) -> TermResponse:
    """Manual override: this term becomes current and ACTIVE; all others lose the flag."""
    today = today or date.today()
    term = await _get_term(db, tenant_id, term_id)
    if term.status == TermStatus.CANCELLED.value:
        raise StateError("Cannot set a cancelled term as current")
    terms = await _load_terms(db, tenant_id)
    for other in terms:
        other.is_current = False
        other.is_current_locked = False
    term.is_current = True
    term.is_current_locked = True
    _apply_term_statuses(terms, today)
    await commit_or_raise(db)
    await db.refresh(term)
    logger.info("Term %s (%s) set as current", term.term_code, term.id)
    return _to_response(term)


# --- Break days ---
async def list_breaks(db: AsyncSession, tenant_id: UUID, term_id: UUID) -> BreakDatesResponse:
    term = await _get_term(db, tenant_id, term_id)
    return _to_breaks_response(term)


async def add_break_dates(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    dates: List[date],
    description: Optional[str] = None,
) -> BreakDatesResponse:
    """Add break dates inside the term; dates already present are ignored."""
    term = await _get_term(db, tenant_id, term_id)
    _validate_break_dates(term.start_date, term.end_date, dates)
    added = [d for d in dates if term.add_break_date(d)]
    if description is not None:
        term.break_description = description
    await commit_or_raise(db)
    await db.refresh(term)
    logger.info("Added %d break dates to term %s", len(added), term.term_code)
    return _to_breaks_response(term)


async def replace_break_dates(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    dates: List[date],
    description: Optional[str] = None,
) -> BreakDatesResponse:
    term = await _get_term(db, tenant_id, term_id)
    _validate_break_dates(term.start_date, term.end_date, dates)
    term.set_break_dates(dates)
    if description is not None:
        term.break_description = description
    await commit_or_raise(db)
    await db.refresh(term)
    return _to_breaks_response(term)


async def remove_break_date(
    db: AsyncSession,
    tenant_id: UUID,
    term_id: UUID,
    break_date: date,
) -> BreakDatesResponse:
    term = await _get_term(db, tenant_id, term_id)
    if not term.remove_break_date(break_date):
        raise NotFoundError(f"{break_date.isoformat()} is not a break date of this term")
    await commit_or_raise(db)
    await db.refresh(term)
    return _to_breaks_response(term)


async def clear_break_dates(db: AsyncSession, tenant_id: UUID, term_id: UUID) -> BreakDatesResponse:
    term = await _get_term(db, tenant_id, term_id)
    term.clear_break_dates()
    term.break_description = None
    await commit_or_raise(db)
    await db.refresh(term)
    return _to_breaks_response(term)
