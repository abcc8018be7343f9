"""Mercado Pago REST client: only the payment lookup the webhook needs."""

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from merchpay.core.config import settings
from merchpay.core.exceptions import GatewayError
from merchpay.utils.logger import get_logger

logger = get_logger(__name__)


class GatewayPayment(BaseModel):
    """Subset of GET /v1/payments/{id} used for reconciliation."""

    id: str
    status: Optional[str] = None
    status_detail: Optional[str] = None
    external_reference: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)


class PaymentReference(BaseModel):
    """JSON embedded in external_reference when the checkout was created."""

    user_id: str = Field(..., alias="userId")
    installments: List[int] = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)


def parse_external_reference(raw: Optional[str]) -> Optional[PaymentReference]:
    """Return the parsed reference, or None when it is missing or malformed."""
    if not raw:
        return None
    try:
        return PaymentReference.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        logger.error("Invalid external_reference %r: %s", raw, e)
        return None


class MercadoPagoClient:
    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.access_token = access_token or settings.mercadopago_access_token
        self.base_url = (base_url or settings.mercadopago_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.mercadopago_timeout_seconds
        self._transport = transport

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        if not self.access_token:
            raise GatewayError("Mercado Pago access token is not configured")
        headers: Dict[str, str] = {"Authorization": f"Bearer {self.access_token}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(f"/v1/payments/{payment_id}", headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise GatewayError(f"Failed to fetch payment {payment_id}: {e}") from e
        try:
            return GatewayPayment.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise GatewayError(f"Unexpected payment payload for {payment_id}: {e}") from e


def get_gateway_client() -> MercadoPagoClient:
    return MercadoPagoClient()
