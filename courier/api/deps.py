"""FastAPI dependency injection — runtime and admin service."""
from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from courier.admin.service import AdminService
from courier.runtime import CourierRuntime


def get_runtime(request: Request) -> CourierRuntime:
    """Return the runtime built by the application lifespan."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Notification runtime is not initialised")
    return runtime


def get_admin(runtime: CourierRuntime = Depends(get_runtime)) -> AdminService:
    return runtime.admin
