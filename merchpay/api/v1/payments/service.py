"""Payments service: administrator review, cash/transfer intake, receipt upload, listing."""

import os
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.auth.models import User
from merchpay.auth.schemas import CurrentUser
from merchpay.core.config import settings
from merchpay.core.enums import PaymentMethod, PaymentStatus, ReviewAction, UserRole
from merchpay.core.exceptions import NotFound, ReceiptStorageError, ServiceError
from merchpay.core.ledger import LedgerBalance
from merchpay.core.models import Payment
from merchpay.db.session import utcnow
from merchpay.utils.logger import get_logger
from merchpay.utils.s3_utils import ReceiptStorage

from . import policy
from .schemas import (
    CashPaymentCreate,
    GroupFailure,
    GroupReviewData,
    IntakeData,
    LedgerData,
    PaymentCounts,
    PaymentListData,
    PaymentResponse,
    PaymentWithStudent,
    ReviewPaymentRequest,
    TransferPaymentCreate,
)

logger = get_logger(__name__)

ALLOWED_RECEIPT_TYPES: Dict[str, str] = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def _epoch_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def _payment_to_response(p: Payment) -> PaymentResponse:
    return PaymentResponse.model_validate(p)


def _ledger_data(balance: Optional[LedgerBalance]) -> Optional[LedgerData]:
    if balance is None:
        return None
    return LedgerData(new_paid_amount=balance.new_paid_amount, new_balance=balance.new_balance)


async def get_student(db: AsyncSession, student_id: Optional[UUID] = None, dni: Optional[str] = None) -> User:
    stmt = select(User).where(User.role == UserRole.STUDENT.value)
    if student_id is not None:
        stmt = stmt.where(User.id == student_id)
    elif dni:
        stmt = stmt.where(User.dni == dni.strip())
    else:
        raise ServiceError("Student id or dni is required", status.HTTP_400_BAD_REQUEST)
    student = (await db.execute(stmt)).scalar_one_or_none()
    if not student:
        raise NotFound("Student not found")
    return student


async def _load_payment(db: AsyncSession, payment_id: UUID) -> Payment:
    payment = (
        await db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not payment:
        raise NotFound("Payment not found")
    return payment


# --- Review ---
async def _review_one(
    db: AsyncSession,
    actor: CurrentUser,
    payment_id: UUID,
    action: ReviewAction,
    rejection_reason: Optional[str],
) -> Optional[LedgerBalance]:
    """Review one record in its own transaction. A failed ledger update leaves the record untouched."""
    try:
        payment = await _load_payment(db, payment_id)
        balance: Optional[LedgerBalance] = None
        if action == ReviewAction.APPROVE:
            balance = await policy.approve_payment(db, actor, payment)
        else:
            await policy.reject_payment(db, actor, payment, rejection_reason)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return balance


async def review_payment(
    db: AsyncSession,
    actor: CurrentUser,
    payment_id: UUID,
    payload: ReviewPaymentRequest,
) -> Optional[LedgerData]:
    balance = await _review_one(db, actor, payment_id, payload.action, payload.rejection_reason)
    return _ledger_data(balance)


async def get_transaction_group(db: AsyncSession, transaction_ref: str) -> List[PaymentResponse]:
    result = await db.execute(
        select(Payment)
        .where(Payment.transaction_ref == transaction_ref)
        .order_by(Payment.installment_number.asc(), Payment.submitted_at.asc())
    )
    return [_payment_to_response(p) for p in result.scalars().all()]


async def review_transaction_group(
    db: AsyncSession,
    actor: CurrentUser,
    transaction_ref: str,
    payload: ReviewPaymentRequest,
) -> GroupReviewData:
    """
    Approve or reject every record of a submission. Each record is reviewed in its own
    transaction, so some may succeed while others fail; failures are listed in the result.
    """
    rows = (
        await db.execute(
            select(Payment.id, Payment.installment_number)
            .where(Payment.transaction_ref == transaction_ref)
            .order_by(Payment.installment_number.asc())
        )
    ).all()
    if not rows:
        raise NotFound("No payments found for this transaction")

    outcome = GroupReviewData(transaction_ref=transaction_ref, action=payload.action)
    for payment_id, installment_number in rows:
        try:
            balance = await _review_one(db, actor, payment_id, payload.action, payload.rejection_reason)
        except ServiceError as e:
            logger.warning("Group %s: payment %s not reviewed: %s", transaction_ref, payment_id, e.message)
            outcome.failed.append(
                GroupFailure(payment_id=payment_id, installment_number=installment_number, error=e.message)
            )
            continue
        except SQLAlchemyError:
            logger.exception("Group %s: payment %s failed on the database", transaction_ref, payment_id)
            outcome.failed.append(
                GroupFailure(payment_id=payment_id, installment_number=installment_number, error="Database error")
            )
            continue
        outcome.succeeded.append(payment_id)
        if balance is not None:
            outcome.new_paid_amount = balance.new_paid_amount
            outcome.new_balance = balance.new_balance
    return outcome


# --- Cash / transfer intake ---
def _cash_notes(actor: CurrentUser, notes: str, receipt_number: Optional[str]) -> str:
    text = f"Cash payment - {notes}"
    if receipt_number:
        text += f" | Receipt: {receipt_number.strip()}"
    return text + f" | Registered by: {actor.display_name}"


def _transfer_notes(actor: CurrentUser, payload: TransferPaymentCreate) -> str:
    text = "Bank transfer payment"
    if payload.transfer_reference:
        text += f" | Ref: {payload.transfer_reference.strip()}"
    if payload.transfer_date:
        text += f" | Date: {payload.transfer_date.date().isoformat()}"
    if payload.notes and payload.notes.strip():
        text += f" - {payload.notes.strip()}"
    return text + f" | Registered by: {actor.display_name}"


async def _record_verified_payment(
    db: AsyncSession,
    actor: CurrentUser,
    student: User,
    numbers: Sequence[int],
    amount: Decimal,
    *,
    method: PaymentMethod,
    transaction_ref: str,
    notes: str,
    payment_date: Optional[datetime],
    now: datetime,
) -> IntakeData:
    """Insert pre-approved records and apply the ledger increment in one transaction."""
    try:
        records = await policy.create_payment_records(
            db,
            student,
            numbers,
            amount,
            initial_status=PaymentStatus.APPROVED,
            method=method,
            transaction_ref=transaction_ref,
            notes=notes,
            reviewed_by=actor.id,
            payment_date=payment_date,
            now=now,
        )
        balance = await policy.apply_approval(
            db, student.id, amount, performed_by=actor.id, transaction_ref=transaction_ref
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "%s payment recorded ref=%s student=%s installments=%s amount=%s by=%s",
        method.value, transaction_ref, student.id, list(numbers), amount, actor.id,
    )
    return IntakeData(
        transaction_ref=transaction_ref,
        payments=[_payment_to_response(r) for r in records],
        new_paid_amount=balance.new_paid_amount,
        new_balance=balance.new_balance,
    )


async def record_cash_payment(
    db: AsyncSession, actor: CurrentUser, payload: CashPaymentCreate
) -> IntakeData:
    """Cash was counted by the administrator: records are created APPROVED. Any positive amount is accepted."""
    student = await get_student(db, student_id=payload.student_id, dni=payload.student_dni)
    numbers = await policy.validate_selection(db, student, payload.installments, payload.amount)
    now = utcnow()
    return await _record_verified_payment(
        db,
        actor,
        student,
        numbers,
        payload.amount,
        method=PaymentMethod.CASH,
        transaction_ref=f"CASH-{student.id}-{_epoch_ms(now)}",
        notes=_cash_notes(actor, payload.notes, payload.receipt_number),
        payment_date=None,
        now=now,
    )


async def record_transfer_payment(
    db: AsyncSession, actor: CurrentUser, payload: TransferPaymentCreate
) -> IntakeData:
    """Transfers must match the nominal price of the selected installments."""
    student = await get_student(db, dni=payload.student_dni)
    numbers = await policy.validate_selection(
        db, student, payload.installments, payload.amount, exact_amount=True
    )
    now = utcnow()
    return await _record_verified_payment(
        db,
        actor,
        student,
        numbers,
        payload.amount,
        method=PaymentMethod.TRANSFER,
        transaction_ref=f"TRANSFER-{student.id}-{_epoch_ms(now)}",
        notes=_transfer_notes(actor, payload),
        payment_date=payload.transfer_date,
        now=now,
    )


# --- Receipt upload ---
def _receipt_extension(filename: Optional[str], content_type: str) -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    return ext or ALLOWED_RECEIPT_TYPES[content_type]


def validate_receipt_file(content: bytes, content_type: Optional[str]) -> str:
    """Return the normalized content type or raise a 400."""
    content_type = (content_type or "").lower()
    if content_type not in ALLOWED_RECEIPT_TYPES:
        raise ServiceError("Invalid file type. Only PDF, JPG, PNG, WEBP allowed", status.HTTP_400_BAD_REQUEST)
    if not content:
        raise ServiceError("Uploaded file is empty", status.HTTP_400_BAD_REQUEST)
    if len(content) > settings.receipt_max_bytes:
        max_mb = settings.receipt_max_bytes // (1024 * 1024)
        raise ServiceError(f"File too large (max {max_mb}MB)", status.HTTP_400_BAD_REQUEST)
    return content_type


async def _remove_receipt_quietly(storage: ReceiptStorage, key: str) -> None:
    try:
        await storage.remove(key)
    except ReceiptStorageError as e:
        logger.error("Rollback failed: receipt %s left in storage: %s", key, e.message)
    else:
        logger.warning("Rolled back receipt %s after failed submission", key)


async def submit_payment_receipt(
    db: AsyncSession,
    actor: CurrentUser,
    storage: ReceiptStorage,
    *,
    content: bytes,
    filename: Optional[str],
    content_type: Optional[str],
    installments: List[int],
    amount: Decimal,
    notes: Optional[str] = None,
) -> IntakeData:
    """
    Student uploads a receipt for review. The file is stored first, then PENDING records
    reference it. If the records cannot be written the file is removed again.
    """
    content_type = validate_receipt_file(content, content_type)
    student = await get_student(db, student_id=actor.id)
    numbers = await policy.validate_selection(db, student, installments, amount)

    now = utcnow()
    transaction_ref = f"{student.id}-{_epoch_ms(now)}"
    key = f"{student.id}/{transaction_ref}.{_receipt_extension(filename, content_type)}"
    receipt_url = await storage.upload(key, content, content_type)

    try:
        records = await policy.create_payment_records(
            db,
            student,
            numbers,
            amount,
            initial_status=PaymentStatus.PENDING,
            method=PaymentMethod.UPLOAD,
            transaction_ref=transaction_ref,
            notes=(notes or "").strip() or None,
            receipt_url=receipt_url,
            now=now,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        await _remove_receipt_quietly(storage, key)
        raise
    logger.info("Receipt submitted ref=%s student=%s installments=%s", transaction_ref, student.id, numbers)
    return IntakeData(
        transaction_ref=transaction_ref,
        payments=[_payment_to_response(r) for r in records],
        receipt_url=receipt_url,
    )


# --- Listing ---
async def list_payments(
    db: AsyncSession,
    status_filter: Optional[PaymentStatus] = None,
    limit: int = 50,
) -> PaymentListData:
    stmt = (
        select(Payment, User)
        .join(User, User.id == Payment.user_id)
        .order_by(Payment.submitted_at.desc())
        .limit(limit)
    )
    if status_filter is not None:
        stmt = stmt.where(Payment.status == status_filter.value)
    rows = (await db.execute(stmt)).all()
    payments = [
        PaymentWithStudent(
            **_payment_to_response(p).model_dump(),
            student_name=u.full_name,
            student_dni=u.dni,
        )
        for p, u in rows
    ]

    count_rows = (
        await db.execute(select(Payment.status, func.count(Payment.id)).group_by(Payment.status))
    ).all()
    by_status = {s: c for s, c in count_rows}
    counts = PaymentCounts(
        pending=by_status.get(PaymentStatus.PENDING.value, 0),
        approved=by_status.get(PaymentStatus.APPROVED.value, 0),
        rejected=by_status.get(PaymentStatus.REJECTED.value, 0),
    )
    counts.total = counts.pending + counts.approved + counts.rejected
    return PaymentListData(payments=payments, counts=counts)
