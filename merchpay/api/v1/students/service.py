"""Students service: account opening and ledger views derived from payment records."""

from decimal import Decimal
from typing import Dict
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.api.v1.payments import policy
from merchpay.api.v1.payments.coverage import estimate_covered_installments, suggest_installments
from merchpay.api.v1.payments.service import get_student
from merchpay.auth.models import User
from merchpay.auth.schemas import CurrentUser
from merchpay.auth.security import hash_password
from merchpay.core.enums import InstallmentState, PaymentStatus, UserRole
from merchpay.core.exceptions import ServiceError
from merchpay.core.models import Payment
from merchpay.utils.logger import get_logger

from .schemas import (
    CoverageEstimate,
    InstallmentItem,
    InstallmentOverview,
    StudentCreate,
    StudentResponse,
)

logger = get_logger(__name__)


def _student_to_response(u: User) -> StudentResponse:
    return StudentResponse.model_validate(u)


async def create_student(
    db: AsyncSession, actor: CurrentUser, payload: StudentCreate
) -> StudentResponse:
    """Open a student account: nothing paid, the whole amount outstanding."""
    existing = (await db.execute(select(User.id).where(User.dni == payload.dni))).scalar_one_or_none()
    if existing:
        raise ServiceError(f"A user with DNI {payload.dni} already exists", status.HTTP_409_CONFLICT)

    total = policy.to_money(payload.total_amount)
    student = User(
        dni=payload.dni,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=payload.email,
        role=UserRole.STUDENT.value,
        password_hash=hash_password(payload.dni),
        must_change_password=True,
        total_amount=total,
        installments=payload.installments,
        paid_amount=Decimal("0"),
        balance=total,
        notes=payload.notes,
        created_by=actor.id,
    )
    db.add(student)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(f"A user with DNI {payload.dni} already exists", status.HTTP_409_CONFLICT)
    await db.refresh(student)
    logger.info("Student %s opened total=%s installments=%s by=%s", student.id, total, payload.installments, actor.id)
    return _student_to_response(student)


async def get_installment_overview(db: AsyncSession, student_id: UUID) -> InstallmentOverview:
    """Installment N is PAID when an APPROVED record exists for it, PENDING when one awaits review."""
    student = await get_student(db, student_id=student_id)
    payments = (
        await db.execute(
            select(Payment).where(
                Payment.user_id == student.id,
                Payment.installment_number.is_not(None),
                Payment.status.in_([s.value for s in PaymentStatus.active()]),
            )
        )
    ).scalars().all()
    by_number: Dict[int, Payment] = {p.installment_number: p for p in payments}

    shares = policy.split_amount(student.total_amount, student.installments)
    items = []
    for number, share in enumerate(shares, start=1):
        p = by_number.get(number)
        if p is None:
            items.append(InstallmentItem(number=number, amount=share, state=InstallmentState.DUE))
            continue
        state = InstallmentState.PAID if p.status == PaymentStatus.APPROVED.value else InstallmentState.PENDING
        items.append(
            InstallmentItem(
                number=number,
                amount=share,
                state=state,
                payment_date=p.payment_date,
                transaction_ref=p.transaction_ref,
            )
        )
    return InstallmentOverview(
        student=_student_to_response(student),
        installment_amount=policy.to_money(policy.installment_price(student)),
        installments=items,
    )


async def estimate_coverage(db: AsyncSession, student_id: UUID, amount: Decimal) -> CoverageEstimate:
    student = await get_student(db, student_id=student_id)
    covered = estimate_covered_installments(amount, student.total_amount, student.installments)
    claimed = await policy.find_claimed_installments(
        db, student.id, list(range(1, student.installments + 1))
    )
    return CoverageEstimate(
        amount=amount,
        installment_amount=policy.to_money(policy.installment_price(student)),
        covered_installments=covered,
        suggested_installments=suggest_installments(covered, student.installments, claimed),
    )
