from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_store
from app.auth.dependencies import ensure_access, get_current_user
from app.auth.services import SessionUser
from app.core.exceptions import ServiceError
from app.core.local_store import LocalStore
from app.core.schemas import SchoolSettings

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])


@router.get("/{school_id}", response_model=SchoolSettings)
async def get_settings(
    school_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> SchoolSettings:
    ensure_access(current_user, school_id)
    return await store.get_settings(school_id)


@router.put("/{school_id}", response_model=SchoolSettings)
async def update_settings(
    school_id: str,
    payload: SchoolSettings,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> SchoolSettings:
    ensure_access(current_user, school_id)
    try:
        return await store.save_settings(school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
