"""Fees schemas.

Balance and status are never accepted from clients; they are derived from
amount, discount and paid on every save.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.core.enums import TransportationType


class FeeCreate(BaseModel):
    student_id: str
    fee_type: str = Field(..., min_length=1, description="tuition, transportation, uniform, books, activities, other")
    description: Optional[str] = None
    transportation_type: Optional[TransportationType] = None
    amount: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    paid: Decimal = Field(Decimal("0"), ge=0)
    due_date: date
    school_id: Optional[str] = None


class FeeUpdate(BaseModel):
    fee_type: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    transportation_type: Optional[TransportationType] = None
    amount: Optional[Decimal] = Field(None, ge=0)
    discount: Optional[Decimal] = Field(None, ge=0)
    paid: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[date] = None


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)


class InstallmentPlanCreate(BaseModel):
    count: Optional[int] = Field(None, ge=1, description="Defaults to the school's default installment count")
    interval_months: int = Field(1, ge=1)
