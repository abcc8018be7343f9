"""Webhook schemas."""

from typing import Any, Optional

from pydantic import BaseModel, field_validator


class WebhookData(BaseModel):
    id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip() or None


class WebhookNotification(BaseModel):
    """Mercado Pago notification body: ``{"type": "payment", "data": {"id": ...}}``."""

    type: Optional[str] = None
    action: Optional[str] = None
    data: Optional[WebhookData] = None

    class Config:
        extra = "allow"


class WebhookAck(BaseModel):
    success: bool = True
