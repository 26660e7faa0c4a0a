"""
FastAPI application entry point for the fleet backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from fleet_backend.config import Settings, get_settings
from fleet_backend.dependencies import Services, build_services
from fleet_backend.errors import DuplicateNameError, FleetError, MachineNotFoundError
from fleet_backend.routes import router

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    DuplicateNameError: 400,
    MachineNotFoundError: 404,
}


async def _fleet_error_handler(request: Request, exc: FleetError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), 500)
    if status_code == 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(
            str(part) for part in error.get("loc", ()) if part != "body"
        )
        message = error.get("msg", "Invalid request")
        messages.append(f"{location}: {message}" if location else message)
    return JSONResponse(
        status_code=422, content={"error": "; ".join(messages) or "Invalid request"}
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # ServerErrorMiddleware re-raises afterwards, so the server logs the traceback.
    return JSONResponse(status_code=500, content={"error": str(exc)})


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        services.close()

    app = FastAPI(title="Machine Fleet Backend", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(FleetError, _fleet_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    @app.get("/health", tags=["ops"])
    def health() -> dict[str, object]:
        """Simple readiness probe."""
        return {"status": "ok", "store": type(services.store).__name__}

    app.include_router(router, prefix=settings.api_prefix)

    # Mounted last so it never shadows the API routes.
    if settings.static_dir:
        app.mount(
            "/",
            StaticFiles(directory=settings.static_dir, html=True),
            name="static",
        )
    return app


app = create_app()
