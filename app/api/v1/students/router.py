from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_store
from app.auth.dependencies import ensure_access, get_current_user, scoped_grades, scoped_school_id
from app.auth.services import SessionUser
from app.core.exceptions import ServiceError
from app.core.local_store import LocalStore
from app.core.schemas import Student

from .schemas import StudentCreate, StudentUpdate

router = APIRouter(prefix="/api/v1/students", tags=["students"])


async def _get_accessible(store: LocalStore, current_user: SessionUser, student_id: str) -> Student:
    student = await store.get_student(student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    ensure_access(current_user, student.school_id, student.grade)
    return student


@router.get("", response_model=List[Student])
async def list_students(
    school_id: Optional[str] = None,
    grade: Optional[List[str]] = Query(None, description="One or more grade levels"),
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> List[Student]:
    return await store.get_students(scoped_school_id(current_user, school_id), scoped_grades(current_user, grade))


@router.get("/{student_id}", response_model=Student)
async def get_student(
    student_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Student:
    return await _get_accessible(store, current_user, student_id)


@router.post("", response_model=Student, status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Student:
    ensure_access(current_user, payload.school_id, payload.grade)
    try:
        return await store.save_student(payload.model_dump())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{student_id}", response_model=Student)
async def update_student(
    student_id: str,
    payload: StudentUpdate,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Student:
    student = await _get_accessible(store, current_user, student_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("grade"):
        ensure_access(current_user, student.school_id, changes["grade"])
    try:
        return await store.save_student({**changes, "id": student_id})
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(
    student_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> None:
    await _get_accessible(store, current_user, student_id)
    try:
        await store.delete_student(student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
