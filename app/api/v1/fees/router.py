"""Fees router: fees, payments, summary and installment plans."""

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
from app.core.schemas import Fee, FeeSummary, Installment

from .schemas import FeeCreate, FeeUpdate, InstallmentPlanCreate, PaymentCreate

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


async def _get_accessible(store: LocalStore, current_user: SessionUser, fee_id: str) -> Fee:
    fee = await store.get_fee(fee_id)
    if fee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fee not found")
    ensure_access(current_user, fee.school_id, fee.grade)
    return fee


@router.get("", response_model=List[Fee])
async def list_fees(
    school_id: Optional[str] = None,
    student_id: Optional[str] = None,
    grade: Optional[List[str]] = Query(None, description="One or more grade levels"),
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> List[Fee]:
    return await store.get_fees(
        scoped_school_id(current_user, school_id), student_id, scoped_grades(current_user, grade)
    )


@router.get("/summary", response_model=FeeSummary)
async def fee_summary(
    school_id: str,
    grade: Optional[List[str]] = Query(None),
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> FeeSummary:
    return await store.get_fee_summary(scoped_school_id(current_user, school_id), scoped_grades(current_user, grade))


@router.get("/{fee_id}", response_model=Fee)
async def get_fee(
    fee_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Fee:
    return await _get_accessible(store, current_user, fee_id)


@router.post("", response_model=Fee, status_code=status.HTTP_201_CREATED)
async def create_fee(
    payload: FeeCreate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Fee:
    await ensure_student_access(store, current_user, payload.student_id)
    try:
        return await store.save_fee(payload.model_dump(exclude_none=True))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{fee_id}", response_model=Fee)
async def update_fee(
    fee_id: str,
    payload: FeeUpdate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Fee:
    await _get_accessible(store, current_user, fee_id)
    try:
        return await store.save_fee({**payload.model_dump(exclude_unset=True), "id": fee_id})
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{fee_id}/payments", response_model=Fee)
async def record_payment(
    fee_id: str,
    payload: PaymentCreate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Fee:
    await _get_accessible(store, current_user, fee_id)
    try:
        return await store.record_payment(fee_id, payload.amount)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{fee_id}/installments", response_model=List[Installment], status_code=status.HTTP_201_CREATED)
async def create_installment_plan(
    fee_id: str,
    payload: InstallmentPlanCreate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> List[Installment]:
    fee = await _get_accessible(store, current_user, fee_id)
    count = payload.count
    if count is None:
        count = (await store.get_settings(fee.school_id)).default_installments
    try:
        async with store.batched():
            return await store.create_installment_plan(fee, count, payload.interval_months)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{fee_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fee(
    fee_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> None:
    await _get_accessible(store, current_user, fee_id)
    try:
        await store.delete_fee(fee_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
