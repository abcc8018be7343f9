"""Payments router: review, cash/transfer registration, receipt upload, listing."""

import json
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.auth.rbac import require_admin, require_student
from merchpay.auth.schemas import CurrentUser
from merchpay.core.enums import PaymentStatus, ReviewAction
from merchpay.core.exceptions import ServiceError
from merchpay.db.session import get_db
from merchpay.utils.s3_utils import ReceiptStorage, get_receipt_storage

from .schemas import (
    ApiResponse,
    CashPaymentCreate,
    GroupReviewData,
    IntakeData,
    LedgerData,
    PaymentListData,
    PaymentResponse,
    ReviewPaymentRequest,
    TransferPaymentCreate,
)
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


# --- Listing ---
@router.get("", response_model=ApiResponse[PaymentListData])
async def list_payments(
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[PaymentListData]:
    data = await service.list_payments(db, status_filter=payment_status, limit=limit)
    return ApiResponse(data=data)


@router.get("/groups/{transaction_ref}", response_model=ApiResponse[List[PaymentResponse]])
async def get_transaction_group(
    transaction_ref: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[List[PaymentResponse]]:
    payments = await service.get_transaction_group(db, transaction_ref)
    if not payments:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No payments found for this transaction")
    return ApiResponse(data=payments)


# --- Review ---
@router.patch("/groups/{transaction_ref}", response_model=ApiResponse[GroupReviewData])
async def review_transaction_group(
    transaction_ref: str,
    payload: ReviewPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    try:
        outcome = await service.review_transaction_group(db, current_user, transaction_ref, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not outcome.complete:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=jsonable_encoder(
                {
                    "success": False,
                    "error": (
                        f"{len(outcome.failed)} of {len(outcome.failed) + len(outcome.succeeded)} "
                        f"payment(s) could not be {'approved' if payload.action == ReviewAction.APPROVE else 'rejected'}"
                    ),
                    "data": outcome,
                }
            ),
        )
    verb = "approved" if payload.action == ReviewAction.APPROVE else "rejected"
    return ApiResponse(message=f"{len(outcome.succeeded)} payment(s) {verb}", data=outcome)


@router.patch("/{payment_id}", response_model=ApiResponse[LedgerData])
async def review_payment(
    payment_id: UUID,
    payload: ReviewPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[LedgerData]:
    try:
        data = await service.review_payment(db, current_user, payment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if payload.action == ReviewAction.APPROVE:
        return ApiResponse(message="Payment approved successfully", data=data)
    return ApiResponse(message="Payment rejected")


# --- Intake ---
@router.post("/cash", response_model=ApiResponse[IntakeData], status_code=status.HTTP_201_CREATED)
async def register_cash_payment(
    payload: CashPaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[IntakeData]:
    try:
        data = await service.record_cash_payment(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(message="Cash payment registered", data=data)


@router.post("/transfer", response_model=ApiResponse[IntakeData], status_code=status.HTTP_201_CREATED)
async def register_transfer_payment(
    payload: TransferPaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[IntakeData]:
    try:
        data = await service.record_transfer_payment(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    installments = ", ".join(str(n) for n in payload.installments)
    return ApiResponse(
        message=f"Transfer of {payload.amount} registered for installment(s) {installments}",
        data=data,
    )


def _parse_installments(raw: str) -> List[int]:
    try:
        values = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid installments format")
    if (
        not isinstance(values, list)
        or not values
        or not all(isinstance(v, int) and not isinstance(v, bool) for v in values)
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid installments format")
    if len(set(values)) != len(values):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="installments must not repeat")
    return sorted(values)


@router.post("/upload", response_model=ApiResponse[IntakeData], status_code=status.HTTP_201_CREATED)
async def upload_payment_receipt(
    file: UploadFile = File(..., description="Receipt (PDF, JPG, PNG or WEBP, max 10MB)"),
    installments: str = Form(..., description="JSON array of installment numbers, e.g. [1,2]"),
    amount: Decimal = Form(..., gt=0),
    notes: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
    storage: ReceiptStorage = Depends(get_receipt_storage),
) -> ApiResponse[IntakeData]:
    numbers = _parse_installments(installments)
    content = await file.read()
    try:
        data = await service.submit_payment_receipt(
            db,
            current_user,
            storage,
            content=content,
            filename=file.filename,
            content_type=file.content_type,
            installments=numbers,
            amount=amount,
            notes=notes,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(
        message=f"Payment submitted successfully for {len(numbers)} installment(s)",
        data=data,
    )
