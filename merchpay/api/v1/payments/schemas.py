"""Payments schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from merchpay.core.enums import PaymentStatus, ReviewAction

T = TypeVar("T")


def _unique_installments(v: List[int]) -> List[int]:
    if len(set(v)) != len(v):
        raise ValueError("installments must not repeat")
    return sorted(v)


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every payments endpoint."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


# --- Payment records ---
class PaymentResponse(BaseModel):
    id: UUID
    user_id: UUID
    installment_number: Optional[int] = None
    amount: Decimal
    status: PaymentStatus
    payment_method: str
    transaction_ref: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    submitted_at: datetime
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    payment_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentWithStudent(PaymentResponse):
    student_name: Optional[str] = None
    student_dni: Optional[str] = None


class PaymentCounts(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total: int = 0


class PaymentListData(BaseModel):
    payments: List[PaymentWithStudent]
    counts: PaymentCounts


# --- Review ---
class ReviewPaymentRequest(BaseModel):
    action: ReviewAction
    rejection_reason: Optional[str] = None

    @model_validator(mode="after")
    def reason_required_on_reject(self) -> "ReviewPaymentRequest":
        if self.action == ReviewAction.REJECT and not (self.rejection_reason or "").strip():
            raise ValueError("Rejection reason is required when rejecting")
        return self


class LedgerData(BaseModel):
    new_paid_amount: Decimal
    new_balance: Decimal


class GroupFailure(BaseModel):
    payment_id: UUID
    installment_number: Optional[int] = None
    error: str


class GroupReviewData(BaseModel):
    transaction_ref: str
    action: ReviewAction
    succeeded: List[UUID] = Field(default_factory=list)
    failed: List[GroupFailure] = Field(default_factory=list)
    new_paid_amount: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None

    @property
    def complete(self) -> bool:
        return not self.failed


# --- Intake ---
class CashPaymentCreate(BaseModel):
    student_id: Optional[UUID] = None
    student_dni: Optional[str] = Field(None, min_length=7, max_length=20)
    installments: List[int] = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    notes: str = Field(..., min_length=1)
    receipt_number: Optional[str] = Field(None, max_length=100)

    @field_validator("installments")
    @classmethod
    def installments_unique(cls, v: List[int]) -> List[int]:
        return _unique_installments(v)

    @field_validator("notes")
    @classmethod
    def notes_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("notes are required for cash payments")
        return v.strip()

    @model_validator(mode="after")
    def student_identified(self) -> "CashPaymentCreate":
        if self.student_id is None and not self.student_dni:
            raise ValueError("student_id or student_dni is required")
        return self


class TransferPaymentCreate(BaseModel):
    student_dni: str = Field(..., min_length=7, max_length=20)
    installments: List[int] = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    transfer_reference: Optional[str] = Field(None, max_length=100)
    transfer_date: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("installments")
    @classmethod
    def installments_unique(cls, v: List[int]) -> List[int]:
        return _unique_installments(v)


class IntakeData(BaseModel):
    transaction_ref: str
    payments: List[PaymentResponse]
    new_paid_amount: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None
    receipt_url: Optional[str] = None
