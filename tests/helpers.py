import json
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.auth.models import User
from merchpay.auth.security import create_access_token
from merchpay.core.enums import UserRole
from merchpay.core.exceptions import GatewayError, ReceiptStorageError
from merchpay.core.models import Payment
from merchpay.utils.mercadopago import GatewayPayment


async def make_user(
    db: AsyncSession,
    *,
    dni: str,
    role: UserRole = UserRole.STUDENT,
    total_amount: Decimal = Decimal("30000"),
    installments: int = 3,
    first_name: str = "Test",
    last_name: str = "User",
) -> User:
    user = User(
        dni=dni,
        first_name=first_name,
        last_name=last_name,
        role=role.value,
        password_hash="not-a-real-hash",
        total_amount=total_amount,
        installments=installments,
        paid_amount=Decimal("0"),
        balance=total_amount,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


async def reload(db: AsyncSession, obj):
    await db.refresh(obj)
    return obj


async def payments_for(db: AsyncSession, user_id) -> List[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.user_id == user_id)
        .order_by(Payment.installment_number.asc(), Payment.submitted_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def assert_ledger_consistent(student: User) -> None:
    assert student.paid_amount + student.balance == student.total_amount


class FakeReceiptStorage:
    """In-memory stand-in for the S3 receipt bucket."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.removed: List[str] = []
        self.fail_upload = False
        self.fail_remove = False

    async def upload(self, key: str, content: bytes, content_type: str) -> str:
        if self.fail_upload:
            raise ReceiptStorageError("Failed to upload file: bucket unavailable")
        self.objects[key] = content
        return f"https://receipts.test/{key}"

    async def remove(self, key: str) -> None:
        if self.fail_remove:
            raise ReceiptStorageError("Failed to remove file: bucket unavailable")
        self.objects.pop(key, None)
        self.removed.append(key)


class FakeGateway:
    """Serves canned Mercado Pago payments by id."""

    def __init__(self) -> None:
        self.payments: Dict[str, GatewayPayment] = {}
        self.calls: List[str] = []

    def set_payment(
        self,
        payment_id: str,
        status: str,
        reference: Optional[dict] = None,
        status_detail: Optional[str] = None,
        raw_reference: Optional[str] = None,
    ) -> None:
        if raw_reference is None and reference is not None:
            raw_reference = json.dumps(reference)
        self.payments[payment_id] = GatewayPayment(
            id=payment_id,
            status=status,
            status_detail=status_detail,
            external_reference=raw_reference,
        )

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        self.calls.append(payment_id)
        if payment_id not in self.payments:
            raise GatewayError(f"Failed to fetch payment {payment_id}: 404 Not Found")
        return self.payments[payment_id]
