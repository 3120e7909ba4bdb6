from fastapi import APIRouter, Request

from courier.core.settings import get_settings

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Basic health check")
def health_check(request: Request) -> dict:
    settings = get_settings()
    body = {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None:
        body.update(runtime.health())
    return body
