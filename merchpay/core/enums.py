from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    STUDENT = "STUDENT"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    UPLOAD = "UPLOAD"
    MERCADOPAGO = "MERCADOPAGO"


class TransitionOrigin(str, Enum):
    """Who is asking for a status change."""

    REVIEW = "REVIEW"
    GATEWAY = "GATEWAY"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @classmethod
    def active(cls) -> Tuple["PaymentStatus", ...]:
        """Statuses that hold a claim on an installment."""
        return (cls.PENDING, cls.APPROVED)

    def can_transition_to(self, target: "PaymentStatus", origin: TransitionOrigin) -> bool:
        return target in _TRANSITIONS[origin].get(self, frozenset())


# REJECTED is terminal for every origin. The gateway may correct an approval downwards.
_TRANSITIONS: Dict[TransitionOrigin, Dict[PaymentStatus, FrozenSet[PaymentStatus]]] = {
    TransitionOrigin.REVIEW: {
        PaymentStatus.PENDING: frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED}),
    },
    TransitionOrigin.GATEWAY: {
        PaymentStatus.PENDING: frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED}),
        PaymentStatus.APPROVED: frozenset({PaymentStatus.REJECTED}),
    },
}


class ReviewAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class InstallmentState(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"
    DUE = "DUE"


_GATEWAY_STATUS_MAP: Dict[str, PaymentStatus] = {
    "approved": PaymentStatus.APPROVED,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.REJECTED,
}


def map_gateway_status(gateway_status: Optional[str]) -> Optional[PaymentStatus]:
    """Map a Mercado Pago payment status to a payment record status. None when unknown."""
    if not gateway_status:
        return None
    return _GATEWAY_STATUS_MAP.get(gateway_status.strip().lower())


class AuditAction(str, Enum):
    CREATE = "CREATE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    GATEWAY_UPDATE = "GATEWAY_UPDATE"
    LEDGER_INCREMENT = "LEDGER_INCREMENT"
