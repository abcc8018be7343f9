from merchpay.auth.models import User
from merchpay.core.models.payment import Payment
from merchpay.core.models.payment_audit_log import PaymentAuditLog

__all__ = [
    "User",
    "Payment",
    "PaymentAuditLog",
]
