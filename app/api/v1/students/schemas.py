"""Students schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.core.enums import TransportationDirection, TransportationType


class StudentCreate(BaseModel):
    name: str = Field(..., min_length=1)
    student_number: Optional[str] = Field(None, description="Generated when omitted")
    grade: str
    parent_name: str = ""
    parent_email: Optional[str] = None
    phone: str = ""
    whatsapp: Optional[str] = None
    address: Optional[str] = None
    transportation: TransportationType = TransportationType.NONE
    transportation_direction: Optional[TransportationDirection] = None
    transportation_fee: Optional[Decimal] = Field(None, ge=0)
    custom_transportation_fee: bool = False
    school_id: str


class StudentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    student_number: Optional[str] = None
    grade: Optional[str] = None
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    address: Optional[str] = None
    transportation: Optional[TransportationType] = None
    transportation_direction: Optional[TransportationDirection] = None
    transportation_fee: Optional[Decimal] = Field(None, ge=0)
    custom_transportation_fee: Optional[bool] = None
