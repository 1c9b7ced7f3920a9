import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from app.api.deps import get_container
from app.auth.dependencies import require_admin
from app.auth.services import SessionUser
from app.core.container import ServiceContainer
from app.core.exceptions import ServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/system", tags=["system"])


class ResetRequest(BaseModel):
    confirm: bool = False


class ResetResponse(BaseModel):
    success: bool
    message: str


@router.post("/reset", response_model=ResetResponse)
async def reset_all(
    payload: ResetRequest,
    container: ServiceContainer = Depends(get_container),
    current_user: SessionUser = Depends(require_admin),
) -> ResetResponse:
    """Delete every school, account, student, fee, installment, message and setting. Irreversible."""
    if not payload.confirm:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reset must be confirmed")
    try:
        await container.reset()
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    logger.warning("System data reset by %s", current_user.email)
    return ResetResponse(success=True, message="All data has been reset")
