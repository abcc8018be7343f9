"""
Gateway webhook intake. Notifications may arrive more than once and out of order, so the
records for one gateway payment (transaction_ref ``MP-{id}``) are created once and then
updated in place; the ledger moves only on the transition into APPROVED.
"""

from decimal import Decimal
from enum import Enum
from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.api.v1.payments import policy
from merchpay.auth.models import User
from merchpay.core.audit import log_payment_audit
from merchpay.core.enums import (
    AuditAction,
    PaymentMethod,
    PaymentStatus,
    TransitionOrigin,
    UserRole,
    map_gateway_status,
)
from merchpay.core.models import Payment
from merchpay.utils.logger import get_logger
from merchpay.utils.mercadopago import GatewayPayment, MercadoPagoClient, PaymentReference, parse_external_reference

logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    IGNORED = "IGNORED"
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"


def gateway_transaction_ref(gateway_payment_id: str) -> str:
    return f"MP-{gateway_payment_id}"


_NOTES = {
    PaymentStatus.APPROVED: "Automatic payment via Mercado Pago",
    PaymentStatus.PENDING: "Payment pending Mercado Pago confirmation",
    PaymentStatus.REJECTED: "Payment rejected by Mercado Pago",
}


def _rejection_reason(gateway_payment: GatewayPayment) -> str:
    return gateway_payment.status_detail or "Payment rejected by Mercado Pago"


async def process_payment_notification(
    db: AsyncSession,
    gateway: MercadoPagoClient,
    gateway_payment_id: str,
) -> WebhookOutcome:
    """Fetch the gateway payment and reconcile it. Raises ServiceError for anything not reconcilable."""
    gateway_payment = await gateway.get_payment(gateway_payment_id)
    logger.info(
        "Gateway payment %s status=%s external_reference=%s",
        gateway_payment.id,
        gateway_payment.status,
        gateway_payment.external_reference,
    )

    reference = parse_external_reference(gateway_payment.external_reference)
    if reference is None:
        logger.error("Gateway payment %s has no usable external_reference; ignored", gateway_payment.id)
        return WebhookOutcome.IGNORED

    target = map_gateway_status(gateway_payment.status)
    if target is None:
        logger.info("Gateway payment %s has unhandled status %s; ignored", gateway_payment.id, gateway_payment.status)
        return WebhookOutcome.IGNORED

    transaction_ref = gateway_transaction_ref(gateway_payment.id)
    existing = (
        await db.execute(
            select(Payment)
            .where(Payment.transaction_ref == transaction_ref)
            .order_by(Payment.installment_number.asc())
            .with_for_update()
        )
    ).scalars().all()

    if existing:
        return await _update_existing(db, list(existing), target, gateway_payment)
    return await _create_records(db, gateway_payment, reference, target, transaction_ref)


async def _update_existing(
    db: AsyncSession,
    records: List[Payment],
    target: PaymentStatus,
    gateway_payment: GatewayPayment,
) -> WebhookOutcome:
    prior = PaymentStatus(records[0].status)
    transaction_ref = records[0].transaction_ref
    if prior == target:
        logger.info("Gateway payment %s already %s; nothing to do", gateway_payment.id, prior.value)
        return WebhookOutcome.UNCHANGED

    try:
        for record in records:
            previous = policy.transition(
                record,
                target,
                TransitionOrigin.GATEWAY,
                rejection_reason=_rejection_reason(gateway_payment) if target == PaymentStatus.REJECTED else None,
            )
            await log_payment_audit(
                db,
                record.user_id,
                AuditAction.GATEWAY_UPDATE,
                payment_id=record.id,
                transaction_ref=transaction_ref,
                from_status=previous.value,
                to_status=target.value,
                amount=record.amount,
                remarks=gateway_payment.status_detail,
            )
        await db.flush()

        if target == PaymentStatus.APPROVED:
            total = sum((Decimal(str(r.amount)) for r in records), Decimal("0"))
            await policy.apply_approval(db, records[0].user_id, total, transaction_ref=transaction_ref)
        elif prior == PaymentStatus.APPROVED:
            logger.warning(
                "Gateway payment %s moved APPROVED -> %s; ledger not reversed, manual reconciliation required",
                gateway_payment.id,
                target.value,
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return WebhookOutcome.UPDATED


async def _create_records(
    db: AsyncSession,
    gateway_payment: GatewayPayment,
    reference: PaymentReference,
    target: PaymentStatus,
    transaction_ref: str,
) -> WebhookOutcome:
    try:
        user_id = UUID(reference.user_id)
    except ValueError:
        logger.error("Gateway payment %s references invalid user id %r; ignored", gateway_payment.id, reference.user_id)
        return WebhookOutcome.IGNORED

    student = (
        await db.execute(select(User).where(User.id == user_id, User.role == UserRole.STUDENT.value))
    ).scalar_one_or_none()
    if not student:
        logger.error("Gateway payment %s references unknown student %s; ignored", gateway_payment.id, user_id)
        return WebhookOutcome.IGNORED

    numbers = policy.validate_installment_numbers(student, set(reference.installments))
    policy.check_splittable_amount(reference.amount, len(numbers))
    if target != PaymentStatus.REJECTED:
        await policy.ensure_installments_available(db, student, numbers)

    try:
        await policy.create_payment_records(
            db,
            student,
            numbers,
            reference.amount,
            initial_status=target,
            method=PaymentMethod.MERCADOPAGO,
            transaction_ref=transaction_ref,
            notes=_NOTES[target],
            rejection_reason=_rejection_reason(gateway_payment) if target == PaymentStatus.REJECTED else None,
        )
        if target == PaymentStatus.APPROVED:
            await policy.apply_approval(db, student.id, reference.amount, transaction_ref=transaction_ref)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Gateway payment %s recorded as %s for student %s installments=%s",
        gateway_payment.id, target.value, student.id, numbers,
    )
    return WebhookOutcome.CREATED
