"""
Tenant service: organization_code generation and lookup.

- organization_code is a human-readable public identifier (e.g. SCH-A3K9).
- tenant_id (UUID) remains the only primary key and FK target; organization_code
  is never used as a foreign key.
"""
import secrets
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ServiceError
from app.core.models import Tenant
from fastapi import status


ORGANIZATION_CODE_PREFIX = "SCH"
# Uppercase, excludes ambiguous 0/O, 1/I
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_organization_code_candidate() -> str:
    """Generate a single candidate organization code (no DB check): SCH-XXXX."""
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
    return f"{ORGANIZATION_CODE_PREFIX}-{suffix}"


async def generate_organization_code(db: AsyncSession, max_attempts: int = 20) -> str:
    """
    Generate a unique organization_code.
    Ensures uniqueness before returning (retries with new suffix on collision).
    """
    for _ in range(max_attempts):
        code = generate_organization_code_candidate()
        result = await db.execute(
            select(Tenant.id).where(Tenant.organization_code == code)
        )
        if result.scalar_one_or_none() is None:
            return code
    raise ServiceError(
        "Could not generate unique organization code",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def get_tenant_by_organization_code(
    db: AsyncSession,
    code: str,
) -> Optional[Tenant]:
    """Fetch tenant by organization_code (public identifier). Returns None if not found."""
    result = await db.execute(
        select(Tenant).where(Tenant.organization_code == code.strip().upper())
    )
    return result.scalar_one_or_none()


async def get_tenant_by_identifier(
    db: AsyncSession,
    identifier: str,
) -> Optional[Tenant]:
    """
    Resolve a tenant from the value a client sends: the tenant UUID or its organization_code.
    Returns None if neither matches.
    """
    identifier = identifier.strip()
    try:
        tenant_id = UUID(identifier)
    except ValueError:
        return await get_tenant_by_organization_code(db, identifier)
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()
