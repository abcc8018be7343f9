"""Student ledger: the single atomic primitive that moves paid_amount and balance."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.auth.models import User
from merchpay.core.audit import log_payment_audit
from merchpay.core.enums import AuditAction, UserRole
from merchpay.core.exceptions import LedgerUpdateError
from merchpay.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LedgerBalance:
    new_paid_amount: Decimal
    new_balance: Decimal


async def increment_paid_amount(
    db: AsyncSession,
    user_id: UUID,
    amount: Decimal,
    *,
    performed_by: Optional[UUID] = None,
    transaction_ref: Optional[str] = None,
) -> LedgerBalance:
    """
    Add ``amount`` to paid_amount and subtract it from balance in one UPDATE ... RETURNING.

    The arithmetic happens in the database so concurrent approvals for the same student
    cannot lose an update. No clamping: balance may go negative. Caller must commit.
    """
    stmt = (
        update(User)
        .where(User.id == user_id, User.role == UserRole.STUDENT.value)
        .values(
            paid_amount=User.paid_amount + amount,
            balance=User.balance - amount,
        )
        .returning(User.paid_amount, User.balance)
    )
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        raise LedgerUpdateError(f"Student {user_id} not found while updating balance")

    result = LedgerBalance(
        new_paid_amount=Decimal(str(row[0])),
        new_balance=Decimal(str(row[1])),
    )
    await log_payment_audit(
        db,
        user_id,
        AuditAction.LEDGER_INCREMENT,
        transaction_ref=transaction_ref,
        amount=amount,
        performed_by=performed_by,
        remarks=f"paid_amount={result.new_paid_amount} balance={result.new_balance}",
    )
    logger.info(
        "Ledger incremented user=%s amount=%s paid_amount=%s balance=%s ref=%s",
        user_id,
        amount,
        result.new_paid_amount,
        result.new_balance,
        transaction_ref,
    )
    return result
