import uuid
from decimal import Decimal

from httpx import AsyncClient

from app.api.v1.grade_fees import service as grade_fee_service


async def test_upsert_computes_total(client: AsyncClient, auth_headers, tenant, make_term):
    term = await make_term(tenant)

    res = await client.put(
        f"/api/v1/grade-fees/{term.id}/5",
        json={"tuition_fee": "1000", "library_fee": "200.50", "transport_fee": "300"},
        headers=auth_headers,
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["grade"] == "5"
    assert Decimal(body["total_fee"]) == Decimal("1500.50")
    assert Decimal(body["sports_fee"]) == Decimal("0")
    assert body["is_active"] is True

    updated = await client.put(
        f"/api/v1/grade-fees/{term.id}/5",
        json={"tuition_fee": "1100"},
        headers=auth_headers,
    )
    assert updated.json()["id"] == body["id"]
    assert Decimal(updated.json()["total_fee"]) == Decimal("1100")


async def test_negative_component_rejected(client: AsyncClient, auth_headers, tenant, make_term):
    term = await make_term(tenant)
    res = await client.put(
        f"/api/v1/grade-fees/{term.id}/5",
        json={"tuition_fee": "-1"},
        headers=auth_headers,
    )
    assert res.status_code == 422
    assert res.json()["code"] == "VALIDATION_ERROR"


async def test_list_and_tolerant_lookup(client: AsyncClient, auth_headers, tenant, make_term):
    term = await make_term(tenant)
    for grade, tuition in (("Grade 5", "1000"), ("6", "1200")):
        await client.put(
            f"/api/v1/grade-fees/{term.id}/{grade}",
            json={"tuition_fee": tuition},
            headers=auth_headers,
        )

    listed = await client.get(f"/api/v1/grade-fees/{term.id}", headers=auth_headers)
    assert [g["grade"] for g in listed.json()] == ["6", "Grade 5"]

    res = await client.get(f"/api/v1/grade-fees/{term.id}/5-A", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["grade"] == "Grade 5"

    missing = await client.get(f"/api/v1/grade-fees/{term.id}/15", headers=auth_headers)
    assert missing.status_code == 404


async def test_toggle_active(client: AsyncClient, auth_headers, tenant, make_term):
    term = await make_term(tenant)
    await client.put(f"/api/v1/grade-fees/{term.id}/5", json={"tuition_fee": "500"}, headers=auth_headers)

    res = await client.patch(
        f"/api/v1/grade-fees/{term.id}/5/active",
        json={"is_active": False},
        headers=auth_headers,
    )

    assert res.status_code == 200
    assert res.json()["is_active"] is False


async def test_unknown_term(client: AsyncClient, auth_headers):
    res = await client.put(
        f"/api/v1/grade-fees/{uuid.uuid4()}/5",
        json={"tuition_fee": "500"},
        headers=auth_headers,
    )
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"


async def test_cancelled_term_rejected(client: AsyncClient, auth_headers, tenant, make_term):
    term = await make_term(tenant, status="CANCELLED")
    res = await client.put(
        f"/api/v1/grade-fees/{term.id}/5",
        json={"tuition_fee": "500"},
        headers=auth_headers,
    )
    assert res.status_code == 409
    assert res.json()["code"] == "INVALID_STATE"


async def test_upsert_matches_equivalent_grade_label(client: AsyncClient, auth_headers, tenant, make_term):
    term = await make_term(tenant)
    first = await client.put(f"/api/v1/grade-fees/{term.id}/5", json={"tuition_fee": "500"}, headers=auth_headers)

    res = await client.put(
        f"/api/v1/grade-fees/{term.id}/Grade 5",
        json={"tuition_fee": "700"},
        headers=auth_headers,
    )

    assert res.status_code == 200, res.text
    assert res.json()["id"] == first.json()["id"]
    assert res.json()["grade"] == "5"
    listed = await client.get(f"/api/v1/grade-fees/{term.id}", headers=auth_headers)
    assert [(g["grade"], Decimal(g["total_fee"])) for g in listed.json()] == [("5", Decimal("700"))]


async def test_concurrent_create_is_conflict(client: AsyncClient, auth_headers, tenant, make_term, monkeypatch):
    term = await make_term(tenant)
    term_id = term.id
    await client.put(f"/api/v1/grade-fees/{term_id}/5", json={"tuition_fee": "500"}, headers=auth_headers)

    async def not_found_yet(*args, **kwargs):
        return None

    # another request created the row after this one looked for it
    monkeypatch.setattr(grade_fee_service, "find_grade_fee", not_found_yet)
    res = await client.put(f"/api/v1/grade-fees/{term_id}/5", json={"tuition_fee": "900"}, headers=auth_headers)

    assert res.status_code == 409
    assert res.json()["code"] == "CONFLICT"
