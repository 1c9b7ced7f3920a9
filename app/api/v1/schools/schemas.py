"""Schools schemas."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class SchoolCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = ""
    phone: str = ""
    address: str = ""
    location: str = ""
    active: bool = True
    subscription_start: Optional[date] = None
    subscription_end: Optional[date] = None
    logo: str = ""


class SchoolUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None
    active: Optional[bool] = None
    subscription_start: Optional[date] = None
    subscription_end: Optional[date] = None
    logo: Optional[str] = None
