"""Entity records held by the local store.

These are the persisted shapes; API request payloads live next to each router.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.core.constants import (
    DEFAULT_INSTALLMENTS,
    DEFAULT_SCHOOL_NAME,
    DEFAULT_TRANSPORTATION_FEE_ONE_WAY,
    DEFAULT_TRANSPORTATION_FEE_TWO_WAY,
    DEFAULT_TUITION_FEE_CATEGORY,
)
from app.core.enums import (
    AccountRole,
    FeeStatus,
    InstallmentStatus,
    MessageStatus,
    TransportationDirection,
    TransportationType,
)


class School(BaseModel):
    id: str
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""
    location: str = ""
    active: bool = True
    subscription_start: Optional[date] = None
    subscription_end: Optional[date] = None
    logo: str = ""


class Account(BaseModel):
    """Cached account. ``password_hash`` never leaves the service boundary."""

    id: str
    name: str = ""
    email: str
    username: str = ""
    role: AccountRole = AccountRole.SCHOOL_ADMIN
    school_id: Optional[str] = None
    school_name: Optional[str] = None
    school_logo: Optional[str] = None
    grade_levels: List[str] = Field(default_factory=list)
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    password_hash: Optional[str] = None


class Student(BaseModel):
    id: str
    name: str
    student_number: str
    grade: str
    parent_name: str = ""
    parent_email: Optional[str] = None
    phone: str = ""
    whatsapp: Optional[str] = None
    address: Optional[str] = None
    transportation: TransportationType = TransportationType.NONE
    transportation_direction: Optional[TransportationDirection] = None
    transportation_fee: Optional[Decimal] = None
    custom_transportation_fee: bool = False
    school_id: str
    created_at: datetime
    updated_at: datetime


class Fee(BaseModel):
    id: str
    student_id: str
    student_name: str
    grade: str
    fee_type: str
    description: Optional[str] = None
    transportation_type: Optional[TransportationType] = None
    amount: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    status: FeeStatus = FeeStatus.unpaid
    due_date: date
    school_id: str
    created_at: datetime
    updated_at: datetime


class Installment(BaseModel):
    id: str
    fee_id: str
    student_id: str
    student_name: str = ""
    grade: str = ""
    amount: Decimal
    due_date: date
    paid_date: Optional[date] = None
    status: InstallmentStatus = InstallmentStatus.upcoming
    note: Optional[str] = None
    school_id: str
    fee_type: str
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    id: str
    student_id: str
    student_name: str = ""
    grade: str = ""
    parent_name: str = ""
    phone: str
    template: str
    message: str
    sent_at: datetime
    status: MessageStatus = MessageStatus.pending
    school_id: str


class SchoolSettings(BaseModel):
    """Per-school configuration, lazily created with defaults on first read."""

    name: str = DEFAULT_SCHOOL_NAME
    email: str = ""
    phone: str = ""
    address: str = ""
    logo: str = ""
    default_installments: int = Field(DEFAULT_INSTALLMENTS, ge=1)
    tuition_fee_category: str = DEFAULT_TUITION_FEE_CATEGORY
    transportation_fee_one_way: Decimal = DEFAULT_TRANSPORTATION_FEE_ONE_WAY
    transportation_fee_two_way: Decimal = DEFAULT_TRANSPORTATION_FEE_TWO_WAY


class FeeSummary(BaseModel):
    total_amount: Decimal = Decimal("0")
    total_discount: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_balance: Decimal = Decimal("0")
    fee_count: int = 0
    paid_count: int = 0
    partial_count: int = 0
    unpaid_count: int = 0
