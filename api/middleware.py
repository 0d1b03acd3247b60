"""
Global middleware and error handlers.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from connectors.errors import CredentialError, ProviderRejected

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware and the credential error handler."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response

    @app.exception_handler(CredentialError)
    async def credential_error_handler(request: Request, exc: CredentialError) -> JSONResponse:
        content = {"message": exc.message, "error": exc.error_code}
        if isinstance(exc, ProviderRejected):
            content["providerStatus"] = exc.http_status
            if exc.description:
                content["description"] = exc.description
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.error_code)
        return JSONResponse(status_code=exc.status_code, content=content)
