"""Students router: account opening, installment overview, coverage estimate."""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.api.v1.payments.schemas import ApiResponse
from merchpay.auth.rbac import require_admin, require_student
from merchpay.auth.schemas import CurrentUser
from merchpay.core.exceptions import ServiceError
from merchpay.db.session import get_db

from .schemas import CoverageEstimate, InstallmentOverview, StudentCreate, StudentResponse
from . import service

router = APIRouter(prefix="/api/v1/students", tags=["students"])


@router.post("", response_model=ApiResponse[StudentResponse], status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[StudentResponse]:
    try:
        student = await service.create_student(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(message="Student created", data=student)


@router.get("/me/installments", response_model=ApiResponse[InstallmentOverview])
async def get_my_installments(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ApiResponse[InstallmentOverview]:
    try:
        overview = await service.get_installment_overview(db, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=overview)


@router.get("/{student_id}/installments", response_model=ApiResponse[InstallmentOverview])
async def get_student_installments(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[InstallmentOverview]:
    try:
        overview = await service.get_installment_overview(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=overview)


@router.get("/{student_id}/coverage", response_model=ApiResponse[CoverageEstimate])
async def estimate_coverage(
    student_id: UUID,
    amount: Decimal = Query(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse[CoverageEstimate]:
    try:
        estimate = await service.estimate_coverage(db, student_id, amount)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=estimate)
