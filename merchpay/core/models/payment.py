"""Payment record: one claim against one installment, grouped by transaction_ref."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import relationship

from merchpay.core.enums import PaymentStatus
from merchpay.db.session import Base, utcnow

ACTIVE_STATUS_PREDICATE = text("status IN ('PENDING', 'APPROVED')")


class Payment(Base):
    """
    One row per installment per submission. Rows sharing transaction_ref were created by
    the same submission and are reviewed together.
    At most one PENDING/APPROVED row may exist per (user_id, installment_number).
    """

    __tablename__ = "payments"
    __table_args__ = (
        Index(
            "uq_payments_active_installment",
            "user_id",
            "installment_number",
            unique=True,
            postgresql_where=ACTIVE_STATUS_PREDICATE,
            sqlite_where=ACTIVE_STATUS_PREDICATE,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=True)  # null only for legacy rows
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_method = Column(String(30), nullable=False)  # CASH, TRANSFER, UPLOAD, MERCADOPAGO
    transaction_ref = Column(String(120), nullable=True, index=True)
    receipt_url = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    reviewed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="payments", foreign_keys=[user_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
