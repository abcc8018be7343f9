"""Payment gateway webhook. Always acknowledges unless the body itself is malformed."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.core.exceptions import ServiceError
from merchpay.db.session import get_db
from merchpay.utils.logger import get_logger
from merchpay.utils.mercadopago import MercadoPagoClient, get_gateway_client

from .schemas import WebhookAck, WebhookNotification
from . import service

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/webhook", tags=["webhook"])


@router.post("", response_model=WebhookAck)
async def receive_notification(
    payload: WebhookNotification,
    db: AsyncSession = Depends(get_db),
    gateway: MercadoPagoClient = Depends(get_gateway_client),
) -> WebhookAck:
    logger.info("Webhook received type=%s action=%s", payload.type, payload.action)
    if payload.type != "payment":
        return WebhookAck()

    if payload.data is None or not payload.data.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No payment ID")

    # Reconciliation failures are logged, never returned: the gateway would retry forever.
    try:
        outcome = await service.process_payment_notification(db, gateway, payload.data.id)
        logger.info("Webhook for payment %s: %s", payload.data.id, outcome.value)
    except ServiceError as e:
        logger.error("Webhook for payment %s not reconciled: %s", payload.data.id, e.message)
    except SQLAlchemyError:
        logger.exception("Webhook for payment %s failed on the database", payload.data.id)
    return WebhookAck()
