"""
Reconciliation policy: installment selection rules, amount rules, status transitions and
the approval step that mutates the student ledger.

Every intake path (cash, transfer, receipt upload, gateway webhook) goes through these
functions. None of them commit; the calling service owns the unit of work.
"""

from datetime import datetime
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.auth.models import User
from merchpay.auth.schemas import CurrentUser
from merchpay.core.audit import log_payment_audit
from merchpay.core.config import settings
from merchpay.core.enums import AuditAction, PaymentMethod, PaymentStatus, TransitionOrigin
from merchpay.core.exceptions import (
    AlreadyReviewed,
    AmountMismatch,
    IllegalTransition,
    InstallmentAlreadyClaimed,
    InvalidInstallment,
    ServiceError,
)
from merchpay.core.ledger import LedgerBalance, increment_paid_amount
from merchpay.core.models import Payment
from merchpay.db.session import utcnow
from merchpay.utils.logger import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round half-up to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def split_amount(amount: Decimal, count: int) -> List[Decimal]:
    """
    Split ``amount`` into ``count`` cent-exact shares that add up to the rounded amount.

    Each share is the amount divided evenly and floored to cents; the leftover cents go
    one each to the first shares. 100.00 over 3 -> [33.34, 33.33, 33.33].
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    total = to_money(amount)
    base = (total / count).quantize(CENT, rounding=ROUND_DOWN)
    leftover_cents = int((total - base * count) / CENT)
    return [base + CENT if i < leftover_cents else base for i in range(count)]


def installment_price(student: User) -> Decimal:
    """Nominal (unrounded) price of one installment."""
    return Decimal(str(student.total_amount)) / Decimal(student.installments)


def expected_transfer_amount(student: User, count: int) -> Decimal:
    return to_money(installment_price(student) * count)


def check_exact_amount(student: User, count: int, amount: Decimal) -> Decimal:
    """
    Transfers must pay the nominal price of the selected installments. The comparison is
    against the unrounded price; the cent-rounded value is only reported. Returns it.
    """
    provided = Decimal(str(amount))
    if abs(provided - installment_price(student) * count) > settings.amount_tolerance:
        raise AmountMismatch(count, expected_transfer_amount(student, count), provided)
    return expected_transfer_amount(student, count)


def check_splittable_amount(amount: Decimal, count: int) -> Decimal:
    """Every installment record must get at least one cent. Returns the amount rounded to cents."""
    rounded = to_money(amount)
    if rounded < CENT * count:
        raise ServiceError(
            f"Amount must be at least {CENT * count} to cover {count} installment(s)",
            status.HTTP_400_BAD_REQUEST,
        )
    return rounded


def validate_installment_numbers(student: User, numbers: Iterable[int]) -> List[int]:
    """Return the numbers sorted; raise InvalidInstallment for any outside 1..installments."""
    ordered = sorted(numbers)
    if not ordered:
        raise ServiceError("Select at least one installment", status.HTTP_400_BAD_REQUEST)
    invalid = [n for n in ordered if n < 1 or n > student.installments]
    if invalid:
        raise InvalidInstallment(invalid, student.installments)
    return ordered


async def find_claimed_installments(
    db: AsyncSession, user_id: UUID, numbers: Sequence[int]
) -> List[int]:
    """Installment numbers among ``numbers`` that already hold a PENDING or APPROVED record."""
    result = await db.execute(
        select(Payment.installment_number).where(
            Payment.user_id == user_id,
            Payment.installment_number.in_(list(numbers)),
            Payment.status.in_([s.value for s in PaymentStatus.active()]),
        )
    )
    return sorted({n for n in result.scalars().all() if n is not None})


async def ensure_installments_available(
    db: AsyncSession, student: User, numbers: Sequence[int]
) -> None:
    claimed = await find_claimed_installments(db, student.id, numbers)
    if claimed:
        raise InstallmentAlreadyClaimed(claimed)


async def validate_selection(
    db: AsyncSession,
    student: User,
    numbers: Iterable[int],
    amount: Decimal,
    *,
    exact_amount: bool = False,
) -> List[int]:
    """Range check, amount checks, then the claim check. Returns sorted numbers."""
    ordered = validate_installment_numbers(student, numbers)
    check_splittable_amount(amount, len(ordered))
    if exact_amount:
        check_exact_amount(student, len(ordered), amount)
    await ensure_installments_available(db, student, ordered)
    return ordered


async def create_payment_records(
    db: AsyncSession,
    student: User,
    numbers: Sequence[int],
    amount: Decimal,
    *,
    initial_status: PaymentStatus,
    method: PaymentMethod,
    transaction_ref: str,
    notes: Optional[str] = None,
    receipt_url: Optional[str] = None,
    reviewed_by: Optional[UUID] = None,
    payment_date: Optional[datetime] = None,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Payment]:
    """
    Insert one record per installment sharing ``transaction_ref``.

    The partial unique index on active (user_id, installment_number) is the last word on
    claims: a violation here means a concurrent submission won, reported as
    InstallmentAlreadyClaimed. The caller must roll back.
    """
    now = now or utcnow()
    reviewed = initial_status != PaymentStatus.PENDING
    records = [
        Payment(
            user_id=student.id,
            installment_number=number,
            amount=share,
            status=initial_status.value,
            payment_method=method.value,
            transaction_ref=transaction_ref,
            receipt_url=receipt_url,
            notes=notes,
            rejection_reason=rejection_reason,
            submitted_at=now,
            reviewed_by=reviewed_by if reviewed else None,
            reviewed_at=now if reviewed else None,
            payment_date=(payment_date or now) if initial_status == PaymentStatus.APPROVED else None,
        )
        for number, share in zip(numbers, split_amount(amount, len(numbers)))
    ]
    db.add_all(records)
    try:
        await db.flush()
    except IntegrityError as e:
        logger.warning(
            "Installment claim race lost user=%s installments=%s ref=%s", student.id, list(numbers), transaction_ref
        )
        raise InstallmentAlreadyClaimed(numbers) from e

    for record in records:
        await log_payment_audit(
            db,
            student.id,
            AuditAction.CREATE,
            payment_id=record.id,
            transaction_ref=transaction_ref,
            to_status=record.status,
            amount=record.amount,
            performed_by=reviewed_by,
        )
    return records


async def apply_approval(
    db: AsyncSession,
    user_id: UUID,
    amount: Decimal,
    *,
    performed_by: Optional[UUID] = None,
    transaction_ref: Optional[str] = None,
) -> LedgerBalance:
    """The only way the policy moves money on the ledger."""
    return await increment_paid_amount(
        db,
        user_id,
        to_money(amount),
        performed_by=performed_by,
        transaction_ref=transaction_ref,
    )


def transition(
    payment: Payment,
    target: PaymentStatus,
    origin: TransitionOrigin,
    *,
    actor_id: Optional[UUID] = None,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentStatus:
    """
    Move ``payment`` to ``target`` if the status machine allows it and return the previous
    status. Reviews only act on PENDING records; for the gateway a same-status request is a
    no-op.
    """
    current = PaymentStatus(payment.status)
    if origin == TransitionOrigin.REVIEW and current != PaymentStatus.PENDING:
        raise AlreadyReviewed(current.value)
    if current == target:
        return current
    if not current.can_transition_to(target, origin):
        raise IllegalTransition(current.value, target.value)

    now = now or utcnow()
    if target == PaymentStatus.REJECTED:
        reason = (rejection_reason or "").strip()
        if origin == TransitionOrigin.REVIEW and not reason:
            raise ServiceError("Rejection reason is required when rejecting", status.HTTP_400_BAD_REQUEST)
        payment.rejection_reason = reason or None
    if target == PaymentStatus.APPROVED:
        payment.payment_date = payment.payment_date or now
    payment.status = target.value
    payment.reviewed_by = actor_id
    payment.reviewed_at = now
    logger.info("Payment %s %s -> %s (%s)", payment.id, current.value, target.value, origin.value)
    return current


async def approve_payment(
    db: AsyncSession, actor: CurrentUser, payment: Payment
) -> LedgerBalance:
    """Approve one PENDING record and add its amount to the owner's ledger."""
    previous = transition(payment, PaymentStatus.APPROVED, TransitionOrigin.REVIEW, actor_id=actor.id)
    await db.flush()
    await log_payment_audit(
        db,
        payment.user_id,
        AuditAction.APPROVE,
        payment_id=payment.id,
        transaction_ref=payment.transaction_ref,
        from_status=previous.value,
        to_status=payment.status,
        amount=payment.amount,
        performed_by=actor.id,
    )
    return await apply_approval(
        db,
        payment.user_id,
        Decimal(str(payment.amount)),
        performed_by=actor.id,
        transaction_ref=payment.transaction_ref,
    )


async def reject_payment(
    db: AsyncSession, actor: CurrentUser, payment: Payment, rejection_reason: Optional[str]
) -> None:
    """Reject one PENDING record. Rejected payments never touch the ledger."""
    previous = transition(
        payment,
        PaymentStatus.REJECTED,
        TransitionOrigin.REVIEW,
        actor_id=actor.id,
        rejection_reason=rejection_reason,
    )
    await db.flush()
    await log_payment_audit(
        db,
        payment.user_id,
        AuditAction.REJECT,
        payment_id=payment.id,
        transaction_ref=payment.transaction_ref,
        from_status=previous.value,
        to_status=payment.status,
        performed_by=actor.id,
        remarks=payment.rejection_reason,
    )
