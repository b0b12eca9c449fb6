from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from faceclock.api.routes import events, health, identities, session
from faceclock.config.settings import ClockSettings
from faceclock.exceptions import DuplicateIdentityError, IdentityNotFoundError, StoreIOFailure, ValidationError
from faceclock.service import ClockService
from faceclock.utils.logger import get_logger

logger = get_logger("api")

_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (DuplicateIdentityError, 409),
    (ValidationError, 422),
    (IdentityNotFoundError, 404),
    (StoreIOFailure, 503),
]


def create_app(service: ClockService, settings: ClockSettings, autostart: bool = False) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autostart:
            service.start()
        yield
        service.stop()

    app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
    app.state.clock_service = service

    for exc_type, status_code in _ERROR_STATUS:
        app.add_exception_handler(exc_type, _error_handler(status_code))

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(identities.router, prefix=settings.api_prefix)
    app.include_router(events.router, prefix=settings.api_prefix)
    app.include_router(session.router, prefix=settings.api_prefix)
    return app


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error(
                "Request failed",
                extra={"event": "request_failed", "path": request.url.path, "error": str(exc)},
            )
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler
