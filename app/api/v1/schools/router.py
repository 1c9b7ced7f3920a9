from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_store
from app.auth.dependencies import ensure_access, get_current_user, require_admin
from app.auth.services import SessionUser
from app.core.enums import AccountRole
from app.core.exceptions import ServiceError
from app.core.local_store import LocalStore
from app.core.schemas import School

from .schemas import SchoolCreate, SchoolUpdate

router = APIRouter(prefix="/api/v1/schools", tags=["schools"])


@router.get("", response_model=List[School])
async def list_schools(
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> List[School]:
    schools = await store.get_schools()
    if current_user.role == AccountRole.ADMIN:
        return schools
    return [s for s in schools if s.id == current_user.school_id]


@router.get("/{school_id}", response_model=School)
async def get_school(
    school_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> School:
    ensure_access(current_user, school_id)
    school = await store.get_school(school_id)
    if school is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School not found")
    return school


@router.post("", response_model=School, status_code=status.HTTP_201_CREATED)
async def create_school(
    payload: SchoolCreate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(require_admin),
) -> School:
    try:
        return await store.save_school(payload.model_dump())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{school_id}", response_model=School)
async def update_school(
    school_id: str,
    payload: SchoolUpdate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> School:
    ensure_access(current_user, school_id)
    try:
        return await store.save_school({**payload.model_dump(exclude_unset=True), "id": school_id})
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{school_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_school(
    school_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(require_admin),
) -> None:
    if await store.get_school(school_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School not found")
    try:
        await store.delete_school(school_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
