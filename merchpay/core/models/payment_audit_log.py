"""Payment audit log: immutable trail of status transitions and ledger mutations."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, Uuid

from merchpay.db.session import Base, utcnow


class PaymentAuditLog(Base):
    """Written in the same transaction as the change it describes."""

    __tablename__ = "payment_audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(Uuid, ForeignKey("payments.id", ondelete="CASCADE"), nullable=True)
    transaction_ref = Column(String(120), nullable=True)
    action = Column(String(30), nullable=False)  # CREATE, APPROVE, REJECT, GATEWAY_UPDATE, LEDGER_INCREMENT
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    performed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    remarks = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
