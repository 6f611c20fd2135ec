"""
Seed script to register a school (tenant) and print an admin access token for it.

Run with:
  python -m app.db.seed_tenant "Green Valley School"

Creates the tenant with a generated organization_code (e.g. SCH-A3K9) if no tenant
with that name exists. Users and roles live in the identity service; the printed
token carries role SUPER_ADMIN and is meant for local development only.
"""
import asyncio
import sys
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.security import create_access_token
from app.core.enums import TenantStatus
from app.core.models import Tenant
from app.core.tenant_service import generate_organization_code
from app.db.session import AsyncSessionLocal

DEFAULT_TENANT_NAME = "Demo School"


async def seed_tenant(db: AsyncSession, organization_name: str) -> Tenant:
    result = await db.execute(select(Tenant).where(Tenant.organization_name == organization_name))
    tenant = result.scalar_one_or_none()
    if tenant:
        print(f"Tenant '{organization_name}' already exists ({tenant.organization_code}).")
        return tenant

    tenant = Tenant(
        organization_code=await generate_organization_code(db),
        organization_name=organization_name,
        status=TenantStatus.ACTIVE.value,
    )
    db.add(tenant)
    await db.commit()
    print(f"Created tenant '{organization_name}' ({tenant.organization_code}).")
    return tenant


def dev_token(tenant: Tenant) -> str:
    user_id = str(uuid.uuid4())
    return create_access_token(
        subject={
            "sub": user_id,
            "user_id": user_id,
            "tenant_id": str(tenant.id),
            "role": "SUPER_ADMIN",
            "name": "Seed Admin",
        },
        expires_minutes=60 * 24,
    )


async def main() -> None:
    name = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_TENANT_NAME
    async with AsyncSessionLocal() as db:
        tenant = await seed_tenant(db, name)
    print(f"X-Tenant-ID: {tenant.organization_code}")
    print(f"Authorization: Bearer {dev_token(tenant)}")


if __name__ == "__main__":
    asyncio.run(main())
