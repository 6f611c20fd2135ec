import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.billing import service as billing_service
from app.api.v1.billing.schemas import AddFeeItemRequest
from app.api.v1.grade_fees import service as grade_fee_service
from app.api.v1.grade_fees.schemas import GradeFeeUpsert
from app.api.v1.payments import service as payment_service
from app.api.v1.payments.schemas import ApplyPaymentRequest
from app.core.exceptions import ConflictError, InvalidAmountError, StudentNotFoundError
from app.core.models import FeeAuditLog, StudentTermAssignment
from app.db.transaction import commit_or_raise


async def _billed(db, tenant, student, term, **fees):
    await grade_fee_service.define_grade_fee(db, tenant.id, term.id, student.grade, GradeFeeUpsert(**fees))
    return await billing_service.bill_student(db, tenant.id, student.id, term.id)


def _pay(student, amount, **extra) -> ApplyPaymentRequest:
    return ApplyPaymentRequest(student_id=student.id, amount=Decimal(amount), **extra)


async def test_partial_payment_fills_oldest_item_first(db_session, tenant, make_student, make_term):
    term = await make_term(tenant)
    student = await make_student(tenant)
    await _billed(db_session, tenant, student, term, tuition_fee="1000", library_fee="200")

    result = await payment_service.apply_payment(db_session, tenant.id, _pay(student, "600"))

    assert [(line.item_name, line.amount_applied, line.new_status) for line in result.allocations] == [
        ("Tuition Fee", Decimal("600.00"), "PARTIAL"),
    ]
    assert result.allocations[0].remaining_balance == Decimal("400.00")
    assert result.total_applied == Decimal("600.00")
    assert result.remaining_unapplied == Decimal("0")
    assert result.overpayment is False
    assert result.all_paid is False

    sta = (await db_session.execute(select(StudentTermAssignment))).scalar_one()
    assert sta.term_fee_status == "PARTIAL"
    assert Decimal(sta.paid_amount) == Decimal("600")
    assert Decimal(sta.pending_amount) == Decimal("600")
    assert sta.last_payment_date == date.today()


async def test_full_payment_then_overpayment(db_session, tenant, make_student, make_term):
    term = await make_term(tenant)
    student = await make_student(tenant)
    await _billed(db_session, tenant, student, term, tuition_fee="1000", library_fee="200")

    result = await payment_service.apply_payment(db_session, tenant.id, _pay(student, "1200"))
    assert [line.new_status for line in result.allocations] == ["PAID", "PAID"]
    assert result.all_paid is True
    assert result.overpayment is False

    extra = await payment_service.apply_payment(db_session, tenant.id, _pay(student, "50"))
    assert extra.allocations == []
    assert extra.total_applied == Decimal("0")
    assert extra.remaining_unapplied == Decimal("50.00")
    assert extra.overpayment is True
    assert extra.all_paid is True


async def test_older_terms_are_paid_first(db_session, tenant, make_student, make_term):
    today = date.today()
    old_term = await make_term(
        tenant,
        name="Term 1",
        start_date=today - timedelta(days=150),
        end_date=today - timedelta(days=60),
        fee_due_date=today - timedelta(days=120),
    )
    current_term = await make_term(tenant, name="Term 2", start_date=today - timedelta(days=20))
    student = await make_student(tenant)
    old_bill = await _billed(db_session, tenant, student, old_term, tuition_fee="1000")
    assert old_bill.term_fee_status == "OVERDUE"
    await _billed(db_session, tenant, student, current_term, tuition_fee="1000")

    result = await payment_service.apply_payment(db_session, tenant.id, _pay(student, "1500"))

    by_term = {line.term_id: line for line in result.allocations}
    assert by_term[old_term.id].amount_applied == Decimal("1000.00")
    assert by_term[old_term.id].new_status == "PAID"
    assert by_term[current_term.id].amount_applied == Decimal("500.00")
    assert by_term[current_term.id].new_status == "PARTIAL"


async def test_billed_upcoming_term_is_payable(db_session, tenant, make_student, make_term):
    today = date.today()
    upcoming = await make_term(tenant, name="Term 2", start_date=today + timedelta(days=5))
    student = await make_student(tenant)
    await _billed(db_session, tenant, student, upcoming, tuition_fee="1000")

    eligibility = await payment_service.validate_for_payment(db_session, tenant.id, student.id)
    assert eligibility.error_code == "ELIGIBLE"

    result = await payment_service.apply_payment(db_session, tenant.id, _pay(student, "300"))

    assert [(line.term_id, line.amount_applied) for line in result.allocations] == [
        (upcoming.id, Decimal("300.00")),
    ]
    assert result.overpayment is False
    assert result.allocations[0].new_status == "PARTIAL"


async def test_term_by_term_order_on_request(db_session, tenant, make_student, make_term):
    today = date.today()
    current_term = await make_term(tenant, name="Term 1")
    future_term = await make_term(tenant, name="Term 2", start_date=today + timedelta(days=90))
    by_due_date = await make_student(tenant)
    by_term = await make_student(tenant)
    for student in (by_due_date, by_term):
        bill = await _billed(db_session, tenant, student, current_term, tuition_fee="1000")
        await _billed(db_session, tenant, student, future_term, tuition_fee="800")
        # falls due after the future term's tuition
        await billing_service.add_fee_item(
            db_session,
            tenant.id,
            bill.id,
            AddFeeItemRequest(item_name="Excursion", amount=Decimal("100"), due_date=today + timedelta(days=200)),
        )

    pooled = await payment_service.apply_payment(db_session, tenant.id, _pay(by_due_date, "1100"))
    assert [(line.term_id, line.item_name, line.amount_applied) for line in pooled.allocations] == [
        (current_term.id, "Tuition Fee", Decimal("1000.00")),
        (future_term.id, "Tuition Fee", Decimal("100.00")),
    ]

    ordered = await payment_service.apply_payment(
        db_session, tenant.id, _pay(by_term, "1100", apply_to_future_terms=True)
    )
    assert [(line.term_id, line.item_name, line.amount_applied) for line in ordered.allocations] == [
        (current_term.id, "Tuition Fee", Decimal("1000.00")),
        (current_term.id, "Excursion", Decimal("100.00")),
    ]
    assert ordered.overpayment is False


async def test_payment_restricted_to_one_term(db_session, tenant, make_student, make_term):
    today = date.today()
    current_term = await make_term(tenant, name="Term 1")
    future_term = await make_term(tenant, name="Term 2", start_date=today + timedelta(days=90))
    student = await make_student(tenant)
    await _billed(db_session, tenant, student, current_term, tuition_fee="1000")
    await _billed(db_session, tenant, student, future_term, tuition_fee="800")

    result = await payment_service.apply_payment(
        db_session, tenant.id, _pay(student, "300", term_id=future_term.id)
    )

    assert [line.term_id for line in result.allocations] == [future_term.id]
    assert result.allocations[0].amount_applied == Decimal("300.00")


async def test_payment_writes_audit_entry(db_session, tenant, make_student, make_term):
    term = await make_term(tenant)
    student = await make_student(tenant)
    bill = await _billed(db_session, tenant, student, term, tuition_fee="1000")

    await payment_service.apply_payment(db_session, tenant.id, _pay(student, "250", reference="RCPT-1"))

    entry = (
        await db_session.execute(
            select(FeeAuditLog).where(
                FeeAuditLog.reference_id == str(bill.id),
                FeeAuditLog.action_type == "PAYMENT",
            )
        )
    ).scalar_one()
    assert entry.old_value == {"paid_amount": "0.00"}
    assert entry.new_value["paid_amount"] == "250.00"
    assert entry.new_value["reference"] == "RCPT-1"


@pytest.mark.parametrize("amount", ["0", "-10"])
async def test_non_positive_amount_rejected(db_session, tenant, make_student, amount):
    student = await make_student(tenant)
    with pytest.raises(InvalidAmountError):
        await payment_service.apply_payment(db_session, tenant.id, _pay(student, amount))


async def test_unknown_student_rejected(db_session, tenant):
    with pytest.raises(StudentNotFoundError):
        await payment_service.apply_payment(
            db_session,
            tenant.id,
            ApplyPaymentRequest(student_id=uuid.uuid4(), amount=Decimal("10")),
        )


async def test_apply_endpoint_error_codes(client: AsyncClient, auth_headers, tenant, make_student):
    student = await make_student(tenant)

    bad_amount = await client.post(
        "/api/v1/payments/apply",
        json={"student_id": str(student.id), "amount": "0"},
        headers=auth_headers,
    )
    assert bad_amount.status_code == 400
    assert bad_amount.json()["code"] == "INVALID_AMOUNT"

    unknown = await client.post(
        "/api/v1/payments/apply",
        json={"student_id": str(uuid.uuid4()), "amount": "10"},
        headers=auth_headers,
    )
    assert unknown.status_code == 404
    assert unknown.json()["code"] == "STUDENT_NOT_FOUND"


async def test_waived_term_cannot_be_paid(client: AsyncClient, auth_headers, db_session, tenant, make_student, make_term):
    term = await make_term(tenant)
    student = await make_student(tenant)
    bill = await _billed(db_session, tenant, student, term, tuition_fee="1000")
    await billing_service.set_assignment_status(db_session, tenant.id, bill.id, "WAIVED")

    targeted = await client.post(
        "/api/v1/payments/apply",
        json={"student_id": str(student.id), "amount": "100", "term_id": str(term.id)},
        headers=auth_headers,
    )
    assert targeted.status_code == 409
    assert targeted.json()["code"] == "INVALID_STATE"

    untargeted = await client.post(
        "/api/v1/payments/apply",
        json={"student_id": str(student.id), "amount": "100"},
        headers=auth_headers,
    )
    assert untargeted.status_code == 200
    assert untargeted.json()["allocations"] == []
    assert untargeted.json()["overpayment"] is True
    assert untargeted.json()["all_paid"] is False


async def test_validate_for_payment(db_session, tenant, make_student, make_term):
    term = await make_term(tenant)
    unbilled = await make_student(tenant)
    billed = await make_student(tenant)
    empty = await make_student(tenant)
    await _billed(db_session, tenant, billed, term, tuition_fee="1000", library_fee="200")
    db_session.add(StudentTermAssignment(tenant_id=tenant.id, student_id=empty.id, academic_term_id=term.id))
    await db_session.commit()

    none = await payment_service.validate_for_payment(db_session, tenant.id, unbilled.id)
    assert none.is_valid is False
    assert none.error_code == "NO_TERM_ASSIGNMENTS"

    no_items = await payment_service.validate_for_payment(db_session, tenant.id, empty.id)
    assert no_items.error_code == "NO_FEE_ITEMS"
    assert no_items.term_assignment_count == 1

    eligible = await payment_service.validate_for_payment(db_session, tenant.id, billed.id)
    assert eligible.is_valid is True
    assert eligible.error_code == "ELIGIBLE"
    assert eligible.unpaid_fee_item_count == 2
    assert eligible.total_pending_amount == Decimal("1200.00")

    await payment_service.apply_payment(db_session, tenant.id, _pay(billed, "1200"))
    paid = await payment_service.validate_for_payment(db_session, tenant.id, billed.id)
    assert paid.is_valid is False
    assert paid.error_code == "NO_UNPAID_ITEMS"

    with pytest.raises(StudentNotFoundError):
        await payment_service.validate_for_payment(db_session, tenant.id, uuid.uuid4())


async def test_batch_matches_single_validation(client: AsyncClient, auth_headers, db_session, tenant, make_student, make_term):
    term = await make_term(tenant)
    billed = await make_student(tenant)
    unbilled = await make_student(tenant)
    await _billed(db_session, tenant, billed, term, tuition_fee="1000")
    unknown = uuid.uuid4()

    res = await client.post(
        "/api/v1/payments/validate/batch",
        json={"student_ids": [str(billed.id), str(unbilled.id), str(unknown), str(billed.id)]},
        headers=auth_headers,
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert [r["student_id"] for r in body["results"]] == [str(billed.id), str(unbilled.id), str(unknown)]
    assert [r["error_code"] for r in body["results"]] == ["ELIGIBLE", "NO_TERM_ASSIGNMENTS", "NO_TERM_ASSIGNMENTS"]
    assert body["eligible_count"] == 1
    assert body["ineligible_count"] == 2

    for student in (billed, unbilled):
        single = await client.get(f"/api/v1/payments/validate/{student.id}", headers=auth_headers)
        match = next(r for r in body["results"] if r["student_id"] == str(student.id))
        assert single.json() == match


async def test_stale_assignment_write_is_conflict(engine, db_session, tenant, make_student, make_term):
    term = await make_term(tenant)
    student = await make_student(tenant)
    bill = await _billed(db_session, tenant, student, term, tuition_fee="1000")
    tenant_id = tenant.id
    sessions = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with sessions() as first, sessions() as second:
        stale = await second.get(StudentTermAssignment, bill.id)
        read_version = stale.version

        await payment_service.apply_payment(first, tenant_id, _pay(student, "300"))

        stale.notes = "edited from an old read"
        with pytest.raises(ConflictError):
            await commit_or_raise(second)

    async with sessions() as check:
        sta = await check.get(StudentTermAssignment, bill.id)
        assert Decimal(sta.paid_amount) == Decimal("300")
        assert sta.notes is None
        assert sta.version == read_version + 1
