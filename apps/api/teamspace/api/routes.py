from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from teamspace.core.config import get_settings
from teamspace.metrics import generate_metrics_payload, metrics_content_type
from teamspace.workspace.api import (
    activity_router,
    dashboard_router,
    get_workspace_service,
    notifications_router,
    projects_router,
    tasks_router,
    templates_router,
)
from teamspace.workspace.service import WorkspaceService

router = APIRouter()
router.include_router(tasks_router)
router.include_router(projects_router)
router.include_router(templates_router)
router.include_router(activity_router)
router.include_router(notifications_router)
router.include_router(dashboard_router)


@router.get("/health", tags=["system"])
async def health(service: WorkspaceService = Depends(get_workspace_service)) -> dict[str, str]:
    settings = get_settings()
    await service.context.gateway.probe()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
        "store": service.context.gateway.backend,
    }


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
