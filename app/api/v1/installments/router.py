from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_store
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
from app.core.schemas import Installment

from .schemas import InstallmentCreate, InstallmentPay, InstallmentUpdate

router = APIRouter(prefix="/api/v1/installments", tags=["installments"])


async def _get_accessible(store: LocalStore, current_user: SessionUser, installment_id: str) -> Installment:
    installment = await store.get_installment(installment_id)
    if installment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Installment not found")
    ensure_access(current_user, installment.school_id, installment.grade or None)
    return installment


@router.get("", response_model=List[Installment])
async def list_installments(
    school_id: Optional[str] = None,
    student_id: Optional[str] = None,
    fee_id: Optional[str] = None,
    grade: Optional[List[str]] = Query(None, description="One or more grade levels"),
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> List[Installment]:
    return await store.get_installments(
        scoped_school_id(current_user, school_id), student_id, fee_id, scoped_grades(current_user, grade)
    )


@router.get("/{installment_id}", response_model=Installment)
async def get_installment(
    installment_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Installment:
    return await _get_accessible(store, current_user, installment_id)


@router.post("", response_model=Installment, status_code=status.HTTP_201_CREATED)
async def create_installment(
    payload: InstallmentCreate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Installment:
    ensure_access(current_user, payload.school_id)
    await ensure_student_access(store, current_user, payload.student_id)
    try:
        return await store.save_installment(payload.model_dump(exclude_none=True))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{installment_id}", response_model=Installment)
async def update_installment(
    installment_id: str,
    payload: InstallmentUpdate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Installment:
    await _get_accessible(store, current_user, installment_id)
    try:
        return await store.save_installment({**payload.model_dump(exclude_unset=True), "id": installment_id})
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{installment_id}/pay", response_model=Installment)
async def pay_installment(
    installment_id: str,
    payload: InstallmentPay,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Installment:
    await _get_accessible(store, current_user, installment_id)
    try:
        return await store.mark_installment_paid(installment_id, payload.paid_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{installment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_installment(
    installment_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> None:
    await _get_accessible(store, current_user, installment_id)
    try:
        await store.delete_installment(installment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
