import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from merchpay.core.enums import UserRole
from merchpay.db.session import Base, utcnow


class User(Base):
    """
    Administrator or student account.

    For students the row also carries the ledger: total_amount is fixed at creation,
    paid_amount and balance are only changed through merchpay.core.ledger.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("installments >= 1", name="chk_users_installments_positive"),
        CheckConstraint("total_amount > 0", name="chk_users_total_amount_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # National id; doubles as the initial password for students
    dni = Column(String(20), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.STUDENT.value)
    password_hash = Column(Text, nullable=False)
    must_change_password = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="ACTIVE")
    notes = Column(Text, nullable=True)

    # Ledger (students only; admins keep the neutral defaults)
    total_amount = Column(Numeric(12, 2), nullable=False, default=1)
    installments = Column(Integer, nullable=False, default=1)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False, default=1)

    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    payments = relationship("Payment", back_populates="user", foreign_keys="Payment.user_id")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
