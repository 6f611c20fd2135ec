import re

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.security import decode_access_token
from app.core.tenant_service import generate_organization_code_candidate
from app.db.schema_check import ensure_tables
from app.db.seed_tenant import dev_token, seed_tenant


async def test_ensure_tables_creates_only_missing():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    try:
        created = await ensure_tables(engine)
        assert "tenants" in created
        assert "term_fee_items" in created

        assert await ensure_tables(engine) == []
    finally:
        await engine.dispose()


def test_organization_code_format():
    code = generate_organization_code_candidate()
    assert re.fullmatch(r"SCH-[A-HJ-NP-Z2-9]{4}", code)


async def test_seed_tenant_is_idempotent(db_session):
    tenant = await seed_tenant(db_session, "Green Valley School")
    assert tenant.organization_code.startswith("SCH-")

    again = await seed_tenant(db_session, "Green Valley School")
    assert again.id == tenant.id


async def test_dev_token_is_accepted(client: AsyncClient, db_session):
    tenant = await seed_tenant(db_session, "Green Valley School")
    token = dev_token(tenant)

    assert decode_access_token(token)["tenant_id"] == str(tenant.id)
    res = await client.get(
        "/api/v1/terms",
        headers={"Authorization": f"Bearer {token}", "X-Tenant-ID": tenant.organization_code},
    )
    assert res.status_code == 200
