"""Installments schemas. Status is derived on every read and never accepted from clients."""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class InstallmentCreate(BaseModel):
    fee_id: str
    student_id: str
    student_name: Optional[str] = None
    grade: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    due_date: date
    paid_date: Optional[date] = None
    note: Optional[str] = None
    school_id: str
    fee_type: str


class InstallmentUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    note: Optional[str] = None


class InstallmentPay(BaseModel):
    paid_date: Optional[date] = None
