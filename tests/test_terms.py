from datetime import date, timedelta

from httpx import AsyncClient

from app.core.models import AcademicTerm


def _term_payload(name="Term 1", start=None, end=None, **extra):
    start = start or date.today() - timedelta(days=5)
    end = end or start + timedelta(days=60)
    payload = {
        "name": name,
        "academic_year": f"{start.year}-{start.year + 1}",
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
    }
    payload.update(extra)
    return payload


async def test_create_term_derives_status_and_current(client: AsyncClient, auth_headers):
    res = await client.post("/api/v1/terms", json=_term_payload(), headers=auth_headers)

    assert res.status_code == 201, res.text
    body = res.json()
    assert body["status"] == "ACTIVE"
    assert body["is_current"] is True
    assert body["is_current_locked"] is False
    assert body["term_code"].startswith("TERM1-")


async def test_create_term_rejects_bad_dates(client: AsyncClient, auth_headers):
    start = date.today()
    res = await client.post(
        "/api/v1/terms", json=_term_payload(start=start, end=start), headers=auth_headers
    )

    assert res.status_code == 400
    assert res.json() == {
        "success": False,
        "message": "end_date must be after start_date",
        "code": "VALIDATION_ERROR",
    }


async def test_create_term_rejects_overlap_in_same_year(client: AsyncClient, auth_headers):
    start = date(2030, 1, 7)
    first = await client.post(
        "/api/v1/terms", json=_term_payload(start=start, end=date(2030, 3, 31)), headers=auth_headers
    )
    assert first.status_code == 201

    res = await client.post(
        "/api/v1/terms",
        json=_term_payload(name="Term 2", start=date(2030, 3, 1), end=date(2030, 6, 30)),
        headers=auth_headers,
    )

    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"
    assert "overlap" in res.json()["message"]


async def test_create_term_rejects_break_outside_range(client: AsyncClient, auth_headers):
    payload = _term_payload(
        start=date(2030, 1, 7), end=date(2030, 1, 20), break_dates=["2030-02-01"]
    )
    res = await client.post("/api/v1/terms", json=payload, headers=auth_headers)
    assert res.status_code == 400


async def test_break_dates_reduce_working_days(client: AsyncClient, auth_headers):
    # Monday 2030-01-07 .. Sunday 2030-01-20: ten weekdays
    res = await client.post(
        "/api/v1/terms",
        json=_term_payload(start=date(2030, 1, 7), end=date(2030, 1, 20)),
        headers=auth_headers,
    )
    term_id = res.json()["id"]
    assert res.json()["working_days"] == 10

    added = await client.post(
        f"/api/v1/terms/{term_id}/breaks",
        json={"dates": ["2030-01-08", "2030-01-12"], "description": "Mid-term"},
        headers=auth_headers,
    )
    assert added.status_code == 200
    assert added.json()["break_dates"] == ["2030-01-08", "2030-01-12"]
    assert added.json()["working_days"] == 9

    removed = await client.delete(f"/api/v1/terms/{term_id}/breaks/2030-01-08", headers=auth_headers)
    assert removed.json()["working_days"] == 10

    missing = await client.delete(f"/api/v1/terms/{term_id}/breaks/2030-01-09", headers=auth_headers)
    assert missing.status_code == 404

    cleared = await client.delete(f"/api/v1/terms/{term_id}/breaks", headers=auth_headers)
    assert cleared.json()["break_dates"] == []


async def test_initialize_academic_year(client: AsyncClient, auth_headers):
    payload = {
        "academic_year": "2031-2032",
        "periods": [
            {"name": "Term 2", "start_date": "2031-05-01", "end_date": "2031-08-31"},
            {"name": "Term 1", "start_date": "2031-01-06", "end_date": "2031-04-15", "is_current": True},
        ],
    }
    res = await client.post("/api/v1/terms/initialize-year", json=payload, headers=auth_headers)

    assert res.status_code == 201, res.text
    terms = res.json()
    assert [t["name"] for t in terms] == ["Term 1", "Term 2"]
    assert terms[0]["is_current"] is True
    assert terms[0]["status"] == "ACTIVE"
    assert terms[1]["is_current"] is False

    again = await client.post("/api/v1/terms/initialize-year", json=payload, headers=auth_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "CONFLICT"


async def test_initialize_academic_year_rejects_overlapping_periods(client: AsyncClient, auth_headers):
    payload = {
        "academic_year": "2031-2032",
        "periods": [
            {"name": "Term 1", "start_date": "2031-01-06", "end_date": "2031-04-15"},
            {"name": "Term 2", "start_date": "2031-04-01", "end_date": "2031-08-31"},
        ],
    }
    res = await client.post("/api/v1/terms/initialize-year", json=payload, headers=auth_headers)
    assert res.status_code == 400


async def test_set_current_overrides_date_derivation(client: AsyncClient, auth_headers):
    running = await client.post("/api/v1/terms", json=_term_payload(), headers=auth_headers)
    upcoming_start = date.today() + timedelta(days=100)
    upcoming = await client.post(
        "/api/v1/terms",
        json=_term_payload(name="Term 2", start=upcoming_start, end=upcoming_start + timedelta(days=60)),
        headers=auth_headers,
    )
    assert upcoming.json()["status"] == "UPCOMING"

    res = await client.post(f"/api/v1/terms/{upcoming.json()['id']}/set-current", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["is_current"] is True
    assert res.json()["status"] == "ACTIVE"

    current = await client.get("/api/v1/terms/current", headers=auth_headers)
    assert current.json()["id"] == upcoming.json()["id"]
    first = await client.get(f"/api/v1/terms/{running.json()['id']}", headers=auth_headers)
    assert first.json()["is_current"] is False
    assert first.json()["status"] == "ACTIVE"


async def test_cancelled_term_cannot_be_current(client: AsyncClient, auth_headers):
    created = await client.post("/api/v1/terms", json=_term_payload(), headers=auth_headers)
    term_id = created.json()["id"]

    cancelled = await client.post(f"/api/v1/terms/{term_id}/cancel", headers=auth_headers)
    assert cancelled.json()["status"] == "CANCELLED"
    assert cancelled.json()["is_current"] is False

    res = await client.post(f"/api/v1/terms/{term_id}/set-current", headers=auth_headers)
    assert res.status_code == 409
    assert res.json()["code"] == "INVALID_STATE"

    current = await client.get("/api/v1/terms/current", headers=auth_headers)
    assert current.json() is None


async def test_list_refreshes_statuses(client: AsyncClient, auth_headers, tenant, make_term):
    await make_term(tenant, start_date=date(2020, 1, 6), end_date=date(2020, 4, 10), status="ACTIVE")

    res = await client.get("/api/v1/terms", headers=auth_headers)

    assert res.status_code == 200
    assert res.json()[0]["status"] == "COMPLETED"
    assert res.json()[0]["is_current"] is False


async def test_update_term_revalidates_overlap(client: AsyncClient, auth_headers):
    await client.post(
        "/api/v1/terms",
        json=_term_payload(start=date(2030, 1, 7), end=date(2030, 3, 31)),
        headers=auth_headers,
    )
    second = await client.post(
        "/api/v1/terms",
        json=_term_payload(name="Term 2", start=date(2030, 5, 1), end=date(2030, 7, 31)),
        headers=auth_headers,
    )

    res = await client.patch(
        f"/api/v1/terms/{second.json()['id']}",
        json={"start_date": "2030-03-15"},
        headers=auth_headers,
    )
    assert res.status_code == 400

    ok = await client.patch(
        f"/api/v1/terms/{second.json()['id']}",
        json={"start_date": "2030-04-15", "fee_due_date": "2030-05-15"},
        headers=auth_headers,
    )
    assert ok.status_code == 200
    assert ok.json()["fee_due_date"] == "2030-05-15"


async def test_requires_authentication(client: AsyncClient, tenant):
    res = await client.get("/api/v1/terms")
    assert res.status_code == 401
    assert res.json()["success"] is False
    assert res.json()["code"] == "UNAUTHORIZED"


async def test_permission_is_checked(client: AsyncClient, tenant, make_token):
    denied = {"Authorization": f"Bearer {make_token(tenant.id, role='TEACHER')}"}
    res = await client.get("/api/v1/terms", headers=denied)
    assert res.status_code == 403

    allowed = {
        "Authorization": f"Bearer {make_token(tenant.id, role='ACCOUNTANT', permissions={'terms': {'read': True}})}"
    }
    res = await client.get("/api/v1/terms", headers=allowed)
    assert res.status_code == 200


def test_working_days_skip_weekends_and_breaks():
    term = AcademicTerm(start_date=date(2030, 1, 7), end_date=date(2030, 1, 20), break_dates=[])
    assert term.working_days() == 10
    assert term.add_break_date(date(2030, 1, 9)) is True
    assert term.add_break_date(date(2030, 1, 9)) is False
    assert term.working_days() == 9
    assert term.is_break_date(date(2030, 1, 9))
