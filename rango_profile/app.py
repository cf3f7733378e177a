"""FastAPI application exposing the saved-resource operations."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from rango_profile.core.config import get_settings
from rango_profile.core.errors import ResourceError
from rango_profile.core.log import configure_logging
from rango_profile.routers import resources as resources_router
from rango_profile.services.resource_service import ResourceService

logger = logging.getLogger("rango.http")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Baseline headers; responses may carry payment metadata, so nothing is cached."""

    def __init__(self, app, *, enforce_hsts: bool) -> None:
        super().__init__(app)
        self._enforce_hsts = enforce_hsts

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.setdefault("Cache-Control", "no-store")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        if self._enforce_hsts:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response


async def resource_error_handler(request: Request, exc: ResourceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s -> %s", request.method, request.url.path, exc.code)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def create_app(resource_service: Optional[ResourceService] = None) -> FastAPI:
    """Factory compatível com uvicorn/gunicorn."""
    settings = get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(title="Rango Profile API")
    application.add_middleware(SecurityHeadersMiddleware, enforce_hsts=settings.app_env == "prod")
    application.add_exception_handler(ResourceError, resource_error_handler)
    application.state.resource_service = resource_service or ResourceService(settings=settings)
    application.include_router(resources_router.router)
    return application
