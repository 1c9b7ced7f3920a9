"""Accounts router: account management and reconciliation with the remote account store."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_account_service, get_reconciler
from app.auth.dependencies import require_admin
from app.auth.services import SessionUser
from app.core.exceptions import ServiceError
from app.core.reconciler import AccountReconciler, FixReport, SyncStatus
from app.core.schemas import Account

from .schemas import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    FixReportResponse,
    SyncResponse,
    SyncStatusResponse,
)
from .service import AccountService

router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])


# --- Reconciliation ---
@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(
    reconciler: AccountReconciler = Depends(get_reconciler),
    current_user: SessionUser = Depends(require_admin),
) -> SyncStatus:
    try:
        return await reconciler.check_sync_status()
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/sync/fix", response_model=FixReportResponse)
async def fix_sync(
    reconciler: AccountReconciler = Depends(get_reconciler),
    current_user: SessionUser = Depends(require_admin),
) -> FixReport:
    try:
        return await reconciler.fix()
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/sync", response_model=SyncResponse)
async def sync_accounts(
    reconciler: AccountReconciler = Depends(get_reconciler),
    current_user: SessionUser = Depends(require_admin),
) -> SyncResponse:
    return SyncResponse(synced=await reconciler.sync())


# --- Accounts ---
@router.get("", response_model=List[AccountResponse])
async def list_accounts(
    school_id: Optional[str] = None,
    service: AccountService = Depends(get_account_service),
    current_user: SessionUser = Depends(require_admin),
) -> List[Account]:
    return await service.list_accounts(school_id)


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: str,
    service: AccountService = Depends(get_account_service),
    current_user: SessionUser = Depends(require_admin),
) -> Account:
    try:
        return await service.get_account(account_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    payload: AccountCreate,
    service: AccountService = Depends(get_account_service),
    current_user: SessionUser = Depends(require_admin),
) -> Account:
    try:
        return await service.create_account(**payload.model_dump())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{account_id}", response_model=AccountResponse)
async def update_account(
    account_id: str,
    payload: AccountUpdate,
    service: AccountService = Depends(get_account_service),
    current_user: SessionUser = Depends(require_admin),
) -> Account:
    try:
        return await service.update_account(account_id, payload.model_dump(exclude_unset=True))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    account_id: str,
    service: AccountService = Depends(get_account_service),
    current_user: SessionUser = Depends(require_admin),
) -> None:
    try:
        await service.delete_account(account_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
