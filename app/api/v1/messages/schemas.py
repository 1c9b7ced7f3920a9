"""Messages schemas."""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.core.enums import MessageTemplate


class MessageSend(BaseModel):
    school_id: str
    student_ids: List[str] = Field(..., min_length=1)
    template: MessageTemplate = MessageTemplate.GENERAL
    amount: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[date] = None
    custom_message: Optional[str] = None
