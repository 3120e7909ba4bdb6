"""FastAPI application.

The lifespan configures logging, builds the ``CourierRuntime`` and, when
``COURIER_AUTOSTART`` is set, starts the delivery queue and the scheduler.
courier/main.py re-exports ``app``.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from courier.api.routes.health import router as health_router
from courier.api.routes.queue import router as queue_router
from courier.api.routes.scheduler import router as scheduler_router
from courier.core.errors import ConfigurationError
from courier.core.logging import setup_logging
from courier.core.settings import get_settings
from courier.runtime import CourierRuntime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()
    runtime = CourierRuntime.build(settings)
    app.state.runtime = runtime
    if settings.autostart:
        await runtime.start()
    else:
        logger.info("COURIER_AUTOSTART is off; queue and scheduler left stopped")
    yield
    await runtime.stop()
    runtime.engine.dispose()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(_: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


app.include_router(health_router)
app.include_router(queue_router)
app.include_router(scheduler_router)
