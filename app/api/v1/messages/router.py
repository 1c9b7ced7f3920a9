from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_messaging, get_store
from app.auth.dependencies import (
    ensure_access,
    ensure_student_access,
    get_current_user,
    scoped_grades,
    scoped_school_id,
)
from app.auth.services import SessionUser
from app.core.exceptions import ServiceError
from app.core.local_store import LocalStore
from app.core.schemas import Message

from .schemas import MessageSend
from .service import MessagingService

router = APIRouter(prefix="/api/v1/messages", tags=["messages"])


@router.get("", response_model=List[Message])
async def list_messages(
    school_id: Optional[str] = None,
    student_id: Optional[str] = None,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> List[Message]:
    messages = await store.get_messages(scoped_school_id(current_user, school_id), student_id)
    grades = scoped_grades(current_user, None)
    if grades:
        messages = [m for m in messages if m.grade in grades]
    return messages


@router.post("/send", response_model=List[Message], status_code=status.HTTP_201_CREATED)
async def send_messages(
    payload: MessageSend,
    store: LocalStore = Depends(get_store),
    messaging: MessagingService = Depends(get_messaging),
    current_user: SessionUser = Depends(get_current_user),
) -> List[Message]:
    """Send a WhatsApp message to each student's guardian and record the outcome."""
    ensure_access(current_user, payload.school_id)
    for student_id in payload.student_ids:
        await ensure_student_access(store, current_user, student_id)
    try:
        return await messaging.send_bulk(
            payload.school_id,
            payload.student_ids,
            payload.template,
            amount=payload.amount,
            due_date=payload.due_date,
            custom_message=payload.custom_message,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> None:
    message = next((m for m in await store.get_messages() if m.id == message_id), None)
    if message is not None:
        ensure_access(current_user, message.school_id, message.grade or None)
    try:
        await store.delete_message(message_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
