"""
Audit logging for payment status transitions and ledger mutations. Call on every change.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.core.enums import AuditAction
from merchpay.core.models import PaymentAuditLog


async def log_payment_audit(
    db: AsyncSession,
    user_id: UUID,
    action: AuditAction,
    *,
    payment_id: Optional[UUID] = None,
    transaction_ref: Optional[str] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    amount: Optional[Decimal] = None,
    performed_by: Optional[UUID] = None,
    remarks: Optional[str] = None,
) -> None:
    """Append one audit log entry. Caller must commit."""
    entry = PaymentAuditLog(
        user_id=user_id,
        payment_id=payment_id,
        transaction_ref=transaction_ref,
        action=action.value,
        from_status=from_status,
        to_status=to_status,
        amount=amount,
        performed_by=performed_by,
        remarks=remarks,
    )
    db.add(entry)
