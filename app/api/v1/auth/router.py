from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status

from app.api.deps import get_auth_service
from app.auth.dependencies import oauth2_scheme
from app.auth.services import AuthService, AuthSession, SessionUser
from app.core.exceptions import ServiceError

from .schemas import LoginRequest

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=AuthSession,
    status_code=http_status.HTTP_200_OK,
)
async def login(
    payload: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthSession:
    try:
        return await auth.login(payload.identifier, payload.password)
    except ServiceError as e:
        if e.status_code == http_status.HTTP_500_INTERNAL_SERVER_ERROR:
            raise HTTPException(status_code=e.status_code, detail="Internal server error")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/logout", status_code=http_status.HTTP_204_NO_CONTENT)
async def logout(
    token: str = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> None:
    await auth.logout(token)


@router.get("/me", response_model=SessionUser)
async def me(
    token: str = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> SessionUser:
    user = await auth.check_auth(token)
    if user is None:
        raise HTTPException(
            status_code=http_status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
