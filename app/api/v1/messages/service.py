"""WhatsApp messaging: template rendering, delivery and message history."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

import httpx

from app.core.constants import CURRENCY, DEFAULT_SCHOOL_NAME
from app.core.enums import MessageStatus, MessageTemplate
from app.core.exceptions import NotFoundError
from app.core.local_store import LocalStore
from app.core.phone import DEFAULT_PHONE_PREFIX, normalize_phone
from app.core.schemas import Message

logger = logging.getLogger(__name__)


def render_template(
    template: MessageTemplate,
    student_name: str,
    amount: Optional[Decimal] = None,
    due_date: Optional[date] = None,
    school_name: Optional[str] = None,
    custom_message: Optional[str] = None,
) -> str:
    school = school_name or ""
    if template == MessageTemplate.PAYMENT_REMINDER:
        due = f"والمستحقة بتاريخ {due_date.isoformat()}" if due_date else ""
        return f"تذكير بدفع الرسوم المستحقة للطالب {student_name} بمبلغ {amount} {CURRENCY} {due}. {school}"
    if template == MessageTemplate.PAYMENT_CONFIRMATION:
        return f"نشكركم على دفع الرسوم للطالب {student_name} بمبلغ {amount} {CURRENCY}. {school}"
    if template == MessageTemplate.TRANSPORTATION_NOTICE:
        return f"إشعار بشأن خدمة النقل المدرسي للطالب {student_name}. {custom_message or ''}. {school}"
    return custom_message or f"رسالة من {school_name or DEFAULT_SCHOOL_NAME} بخصوص الطالب {student_name}"


class WhatsAppClient:
    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        phone_prefix: str = DEFAULT_PHONE_PREFIX,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_url = api_url
        self._phone_prefix = phone_prefix
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._client.headers.update(headers)

    async def send(self, phone: str, text: str) -> bool:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": normalize_phone(phone, self._phone_prefix),
            "type": "text",
            "text": {"body": text},
        }
        try:
            response = await self._client.post(self._api_url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Error sending WhatsApp message: %s", e)
            return False
        if response.is_error:
            logger.error("WhatsApp API error (%s): %s", response.status_code, response.text)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


class MessagingService:
    def __init__(self, store: LocalStore, client: WhatsAppClient) -> None:
        self._store = store
        self._client = client

    async def send_to_student(
        self,
        school_id: str,
        student_id: str,
        template: MessageTemplate,
        amount: Optional[Decimal] = None,
        due_date: Optional[date] = None,
        custom_message: Optional[str] = None,
    ) -> Message:
        """Render, send and record one message. Delivery failure is recorded, not raised."""
        student = await self._store.get_student(student_id)
        if student is None or student.school_id != school_id:
            raise NotFoundError("Student not found")
        settings = await self._store.get_settings(school_id)
        text = render_template(template, student.name, amount, due_date, settings.name, custom_message)
        phone = student.whatsapp or student.phone
        delivered = await self._client.send(phone, text)
        return await self._store.save_message(
            {
                "student_id": student.id,
                "student_name": student.name,
                "grade": student.grade,
                "parent_name": student.parent_name,
                "phone": phone,
                "template": template.value,
                "message": text,
                "status": MessageStatus.delivered if delivered else MessageStatus.failed,
                "school_id": school_id,
            }
        )

    async def send_bulk(self, school_id: str, student_ids: List[str], template: MessageTemplate, **params: Any) -> List[Message]:
        messages: List[Message] = []
        async with self._store.batched():
            for student_id in student_ids:
                try:
                    messages.append(await self.send_to_student(school_id, student_id, template, **params))
                except NotFoundError:
                    logger.warning("Skipping message for unknown student %s", student_id)
        return messages
