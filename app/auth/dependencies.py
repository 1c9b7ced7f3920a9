from typing import List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.api.deps import get_auth_service
from app.auth.services import AuthService, SessionUser
from app.core.enums import AccountRole
from app.core.local_store import LocalStore


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> SessionUser:
    """Resolve the caller from their identity session token."""
    user = await auth.check_auth(token, refresh=False)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(current_user: SessionUser = Depends(get_current_user)) -> SessionUser:
    if current_user.role != AccountRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return current_user


def _forbidden(detail: str = "You do not have access to this school") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def scoped_school_id(user: SessionUser, school_id: Optional[str]) -> Optional[str]:
    """School filter for a list request. Only administrators may list across schools."""
    if user.role == AccountRole.ADMIN:
        return school_id
    if not user.school_id:
        raise _forbidden("Account is not assigned to a school")
    if school_id and school_id != user.school_id:
        raise _forbidden()
    return user.school_id


def scoped_grades(user: SessionUser, grades: Optional[List[str]]) -> Optional[List[str]]:
    """Grade filter for a list request. Grade managers only see their own grade levels."""
    if user.role != AccountRole.GRADE_MANAGER or not user.grade_levels:
        return grades
    if not grades:
        return list(user.grade_levels)
    allowed = [g for g in grades if g in user.grade_levels]
    if not allowed:
        raise _forbidden("You do not have access to these grades")
    return allowed


def ensure_access(user: SessionUser, school_id: Optional[str], grade: Optional[str] = None) -> None:
    if user.role == AccountRole.ADMIN:
        return
    if not school_id or school_id != user.school_id:
        raise _forbidden()
    if grade is not None and user.role == AccountRole.GRADE_MANAGER and user.grade_levels:
        if grade not in user.grade_levels:
            raise _forbidden("You do not have access to this grade")


async def ensure_student_access(store: LocalStore, user: SessionUser, student_id: str) -> None:
    # Unknown students are left to the store, which reports them as missing references
    student = await store.get_student(student_id)
    if student is not None:
        ensure_access(user, student.school_id, student.grade)
