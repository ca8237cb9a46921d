"""Translate ordering and protean errors into HTTP responses.

Validation problems are 400, missing carts/orders 404, conflicts with the
current state 409 and collaborator failures 503. Dependency failures are
logged in full but reported to the caller with a generic message.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import InvalidStateError, ObjectNotFoundError, ValidationError

from ordering.errors import DependencyUnavailable, OrderingError

logger = structlog.get_logger(__name__)


def _body(exc: Exception, fallback_code: str) -> dict:
    if isinstance(exc, OrderingError):
        return {"error": exc.code, "message": exc.message, "fields": exc.messages}
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict):
        text = "; ".join(str(m) for values in messages.values() for m in (values if isinstance(values, list) else [values]))
        fields = {k: [str(m) for m in (v if isinstance(v, list) else [v])] for k, v in messages.items()}
        return {"error": fallback_code, "message": text, "fields": fields}
    return {"error": fallback_code, "message": str(exc) or fallback_code, "fields": {}}


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=_body(exc, "validation_error"))


async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content=_body(exc, "not_found"))


async def conflict_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    return JSONResponse(status_code=409, content=_body(exc, "conflict"))


async def dependency_handler(request: Request, exc: DependencyUnavailable) -> JSONResponse:
    logger.error(
        "Dependency unavailable",
        dependency=exc.dependency,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=503,
        content={"error": exc.code, "message": exc.default_message, "fields": {}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)
    app.add_exception_handler(InvalidStateError, conflict_handler)
    app.add_exception_handler(DependencyUnavailable, dependency_handler)
