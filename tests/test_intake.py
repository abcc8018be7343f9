from decimal import Decimal
from typing import Dict

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.api.v1.payments import policy, service
from merchpay.api.v1.payments.schemas import CashPaymentCreate, TransferPaymentCreate
from merchpay.auth.models import User
from merchpay.auth.schemas import CurrentUser
from merchpay.core.enums import AuditAction, PaymentStatus
from merchpay.core.exceptions import (
    AmountMismatch,
    InstallmentAlreadyClaimed,
    InvalidInstallment,
    LedgerUpdateError,
    NotFound,
    ServiceError,
)
from merchpay.core.models import PaymentAuditLog

from tests.helpers import assert_ledger_consistent, make_user, payments_for, reload


def _cash(student: User, installments, amount, **kwargs) -> CashPaymentCreate:
    return CashPaymentCreate(
        student_id=student.id,
        installments=installments,
        amount=Decimal(str(amount)),
        notes=kwargs.pop("notes", "Paid at the office"),
        **kwargs,
    )


def _transfer(student: User, installments, amount, **kwargs) -> TransferPaymentCreate:
    return TransferPaymentCreate(
        student_dni=student.dni, installments=installments, amount=Decimal(str(amount)), **kwargs
    )


# --- Cash ---
@pytest.mark.asyncio
async def test_cash_payment_creates_approved_records_and_moves_ledger(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User
) -> None:
    data = await service.record_cash_payment(
        db_session, admin_actor, _cash(student, [2, 1], 20000, receipt_number="R-0042")
    )

    assert data.transaction_ref.startswith(f"CASH-{student.id}-")
    assert data.new_paid_amount == Decimal("20000")
    assert data.new_balance == Decimal("10000")

    records = await payments_for(db_session, student.id)
    assert [r.installment_number for r in records] == [1, 2]
    assert [r.amount for r in records] == [Decimal("10000"), Decimal("10000")]
    for r in records:
        assert r.status == PaymentStatus.APPROVED.value
        assert r.payment_method == "CASH"
        assert r.transaction_ref == data.transaction_ref
        assert r.reviewed_by == admin_actor.id
        assert r.payment_date is not None
        assert r.notes == "Cash payment - Paid at the office | Receipt: R-0042 | Registered by: Ana Admin"

    student = await reload(db_session, student)
    assert student.paid_amount == Decimal("20000")
    assert student.balance == Decimal("10000")
    assert_ledger_consistent(student)


@pytest.mark.asyncio
async def test_cash_payment_accepts_any_positive_amount(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User
) -> None:
    data = await service.record_cash_payment(db_session, admin_actor, _cash(student, [1], 4500))
    assert data.new_paid_amount == Decimal("4500")
    assert data.payments[0].amount == Decimal("4500")


@pytest.mark.asyncio
async def test_cash_payment_rejects_claimed_installment(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User
) -> None:
    await service.record_cash_payment(db_session, admin_actor, _cash(student, [1], 10000))

    with pytest.raises(InstallmentAlreadyClaimed) as exc:
        await service.record_cash_payment(db_session, admin_actor, _cash(student, [1, 2], 20000))
    assert exc.value.numbers == [1]
    assert exc.value.status_code == 409

    records = await payments_for(db_session, student.id)
    assert [r.installment_number for r in records] == [1]
    student = await reload(db_session, student)
    assert student.paid_amount == Decimal("10000")
    assert_ledger_consistent(student)


@pytest.mark.asyncio
async def test_cash_payment_rejects_out_of_range_installment(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User
) -> None:
    with pytest.raises(InvalidInstallment):
        await service.record_cash_payment(db_session, admin_actor, _cash(student, [3, 4], 20000))
    assert await payments_for(db_session, student.id) == []


@pytest.mark.asyncio
async def test_cash_payment_unknown_student(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User
) -> None:
    payload = CashPaymentCreate(student_dni="99999999", installments=[1], amount=Decimal("10"), notes="x")
    with pytest.raises(NotFound):
        await service.record_cash_payment(db_session, admin_actor, payload)


@pytest.mark.asyncio
async def test_ledger_failure_rolls_back_records(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def failing_approval(*args, **kwargs):
        raise LedgerUpdateError()

    monkeypatch.setattr(policy, "apply_approval", failing_approval)

    with pytest.raises(LedgerUpdateError):
        await service.record_cash_payment(db_session, admin_actor, _cash(student, [1, 2], 20000))

    # the rollback expired loaded objects
    student = await reload(db_session, student)
    assert await payments_for(db_session, student.id) == []
    audit = (await db_session.execute(select(PaymentAuditLog))).scalars().all()
    assert audit == []
    assert student.paid_amount == Decimal("0")
    assert student.balance == Decimal("30000")


@pytest.mark.asyncio
async def test_concurrent_claim_loses_on_unique_index(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User, monkeypatch: pytest.MonkeyPatch
) -> None:
    await service.record_cash_payment(db_session, admin_actor, _cash(student, [1], 10000))

    # A concurrent request that checked before the first one committed sees no claims
    async def stale_check(*args, **kwargs):
        return []

    monkeypatch.setattr(policy, "find_claimed_installments", stale_check)

    with pytest.raises(InstallmentAlreadyClaimed):
        await service.record_cash_payment(db_session, admin_actor, _cash(student, [1], 10000))

    student = await reload(db_session, student)
    records = await payments_for(db_session, student.id)
    assert len(records) == 1
    assert student.paid_amount == Decimal("10000")
    assert_ledger_consistent(student)


# --- Transfer ---
@pytest.mark.asyncio
async def test_transfer_exact_amount(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User
) -> None:
    data = await service.record_transfer_payment(
        db_session, admin_actor, _transfer(student, [1, 2], 20000, transfer_reference="TX-77")
    )
    assert data.transaction_ref.startswith(f"TRANSFER-{student.id}-")
    assert data.new_balance == Decimal("10000")
    assert all(p.payment_method == "TRANSFER" for p in data.payments)
    assert "Ref: TX-77" in data.payments[0].notes


@pytest.mark.asyncio
async def test_transfer_within_tolerance(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User
) -> None:
    data = await service.record_transfer_payment(db_session, admin_actor, _transfer(student, [1, 2], "20000.01"))
    assert data.new_paid_amount == Decimal("20000.01")
    assert sum(p.amount for p in data.payments) == Decimal("20000.01")
    student = await reload(db_session, student)
    assert_ledger_consistent(student)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["19999", "20000.011"])
async def test_transfer_amount_mismatch(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User, amount: str
) -> None:
    with pytest.raises(AmountMismatch) as exc:
        await service.record_transfer_payment(db_session, admin_actor, _transfer(student, [1, 2], amount))
    assert exc.value.expected == Decimal("20000.00")
    assert await payments_for(db_session, student.id) == []
    student = await reload(db_session, student)
    assert student.paid_amount == Decimal("0")


# --- HTTP ---
@pytest.mark.asyncio
async def test_cash_endpoint(
    client: AsyncClient, admin_headers: Dict[str, str], student: User, db_session: AsyncSession
) -> None:
    response = await client.post(
        "/api/v1/payments/cash",
        json={"student_dni": student.dni, "installments": [1, 2], "amount": 20000, "notes": "Front desk"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert Decimal(body["data"]["new_paid_amount"]) == Decimal("20000")
    assert Decimal(body["data"]["new_balance"]) == Decimal("10000")
    assert len(body["data"]["payments"]) == 2

    audit = (
        await db_session.execute(select(PaymentAuditLog.action).order_by(PaymentAuditLog.action))
    ).scalars().all()
    assert audit.count(AuditAction.CREATE.value) == 2
    assert audit.count(AuditAction.LEDGER_INCREMENT.value) == 1


@pytest.mark.asyncio
async def test_cash_endpoint_requires_notes(
    client: AsyncClient, admin_headers: Dict[str, str], student: User
) -> None:
    response = await client.post(
        "/api/v1/payments/cash",
        json={"student_dni": student.dni, "installments": [1], "amount": 100, "notes": "   "},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("Validation error")


@pytest.mark.asyncio
async def test_cash_endpoint_conflict(
    client: AsyncClient, admin_headers: Dict[str, str], student: User
) -> None:
    payload = {"student_dni": student.dni, "installments": [1], "amount": 10000, "notes": "Front desk"}
    assert (await client.post("/api/v1/payments/cash", json=payload, headers=admin_headers)).status_code == 201

    response = await client.post("/api/v1/payments/cash", json=payload, headers=admin_headers)
    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "error": "Installment(s) 1 already have pending or approved payments",
    }


@pytest.mark.asyncio
async def test_transfer_endpoint_mismatch(
    client: AsyncClient, admin_headers: Dict[str, str], student: User
) -> None:
    response = await client.post(
        "/api/v1/payments/transfer",
        json={"student_dni": student.dni, "installments": [1, 2], "amount": 19999},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert "20000.00" in response.json()["error"]


@pytest.mark.asyncio
async def test_intake_endpoints_require_admin(
    client: AsyncClient, student_headers: Dict[str, str], student: User
) -> None:
    payload = {"student_dni": student.dni, "installments": [1], "amount": 10000, "notes": "Front desk"}
    response = await client.post("/api/v1/payments/cash", json=payload, headers=student_headers)
    assert response.status_code == 401
    assert response.json()["success"] is False

    response = await client.post("/api/v1/payments/transfer", json=payload)
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0.004", "0.02"])
async def test_cash_amount_must_give_every_installment_a_cent(
    db_session: AsyncSession, admin_actor: CurrentUser, student: User, amount: str
) -> None:
    with pytest.raises(ServiceError) as exc:
        await service.record_cash_payment(db_session, admin_actor, _cash(student, [1, 2, 3], amount))
    assert exc.value.status_code == 400

    assert await payments_for(db_session, student.id) == []
    student = await reload(db_session, student)
    assert student.paid_amount == Decimal("0")


@pytest.mark.asyncio
async def test_transfer_uneven_installment_price(
    db_session: AsyncSession, admin_actor: CurrentUser
) -> None:
    student = await make_user(db_session, dni="40777888", total_amount=Decimal("10000"), installments=3)

    with pytest.raises(AmountMismatch) as exc:
        await service.record_transfer_payment(db_session, admin_actor, _transfer(student, [1], "3333.32"))
    assert exc.value.expected == Decimal("3333.33")
    assert await payments_for(db_session, student.id) == []

    data = await service.record_transfer_payment(db_session, admin_actor, _transfer(student, [1], "3333.33"))
    assert data.new_balance == Decimal("6666.67")
