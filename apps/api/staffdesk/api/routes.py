from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from staffdesk.approvals.api import router as approvals_router
from staffdesk.core.auth import AuthUser, get_current_user
from staffdesk.core.config import get_settings
from staffdesk.metrics import generate_metrics_payload, metrics_content_type
from staffdesk.records.api import companies_router, router as records_router
from staffdesk.recurrence.api import router as recurrences_router

router = APIRouter()

api_router = APIRouter(prefix="/api")
api_router.include_router(approvals_router)
api_router.include_router(records_router)
api_router.include_router(companies_router)
api_router.include_router(recurrences_router)
router.include_router(api_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
