"""Map domain errors onto JSON HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stackbit_api.errors import StackbitError

logger = logging.getLogger(__name__)


def error_body(exc: StackbitError) -> dict:
    return {"error": {"code": exc.code, "message": exc.message, **exc.extra()}}


async def stackbit_error_handler(request: Request, exc: StackbitError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StackbitError, stackbit_error_handler)
