"""Students schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from merchpay.core.enums import InstallmentState


class StudentCreate(BaseModel):
    dni: str = Field(..., pattern=r"^\d{7,8}$", description="7 or 8 digits; also the initial password")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    total_amount: Decimal = Field(..., gt=0)
    installments: int = Field(..., ge=1, le=120)
    notes: Optional[str] = None


class StudentResponse(BaseModel):
    id: UUID
    dni: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    total_amount: Decimal
    installments: int
    paid_amount: Decimal
    balance: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class InstallmentItem(BaseModel):
    number: int
    amount: Decimal
    state: InstallmentState
    payment_date: Optional[datetime] = None
    transaction_ref: Optional[str] = None


class InstallmentOverview(BaseModel):
    student: StudentResponse
    installment_amount: Decimal
    installments: List[InstallmentItem]


class CoverageEstimate(BaseModel):
    amount: Decimal
    installment_amount: Decimal
    covered_installments: int
    suggested_installments: List[int]
