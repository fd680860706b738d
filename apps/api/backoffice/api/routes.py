from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from backoffice.core.auth import AuthUser, get_current_user
from backoffice.core.config import get_settings
from backoffice.entitlements.api import products_router, router as entitlements_router
from backoffice.metrics import generate_metrics_payload, metrics_content_type
from backoffice.notifications.api import router as notifications_router
from backoffice.quotations.api import router as quotations_router, services_router
from backoffice.tenants.api import router as tenants_router

router = APIRouter()
router.include_router(tenants_router)
router.include_router(entitlements_router)
router.include_router(products_router)
router.include_router(services_router)
router.include_router(quotations_router)
router.include_router(notifications_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str] | None]:
    return {
        "sub": user.sub,
        "roles": user.roles,
        "tenant_id": user.tenant_id,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
