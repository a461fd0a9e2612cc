"""
Problem-details responses for the REST surface.

Every error body is ``application/problem+json``::

    {"type", "title", "status", "detail", "instance", "code"?, "errors"?}

Send refusals additionally carry ``reason`` so REST clients can treat them
exactly like the socket's ``send_rejected`` event.
"""

from http import HTTPStatus
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import DomainException, MessageRejected

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"
PROBLEM_TYPE_BASE = "/problems/"


def _title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _problem(
    request: Request,
    status_code: int,
    *,
    detail: Optional[str] = None,
    code: Optional[str] = None,
    errors: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    problem: Dict[str, Any] = {
        "type": f"{PROBLEM_TYPE_BASE}{code}" if code else "about:blank",
        "title": _title(status_code),
        "status": status_code,
        "detail": detail or "",
        "instance": request.url.path,
    }
    if code:
        problem["code"] = code
    if errors:
        problem["errors"] = jsonable_encoder(errors)
    problem.update(extra)
    return problem


def _split_detail(detail: Any) -> Tuple[Optional[str], Optional[str], Optional[Any]]:
    """HTTPException detail may be a plain string or a {message, code, details} dict."""
    if isinstance(detail, dict):
        code = detail.get("code")
        message = detail.get("message") or detail.get("detail")
        return (
            message if isinstance(message, str) else None,
            code if isinstance(code, str) else None,
            detail.get("details") or detail.get("errors"),
        )
    if detail is None:
        return None, None, None
    return str(detail), None, None


def _respond(problem: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        problem, status_code=problem["status"], media_type=PROBLEM_MEDIA_TYPE, headers=headers
    )


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail, code, errors = _split_detail(exc.detail)
        problem = _problem(request, exc.status_code, detail=detail, code=code, errors=errors)
        return _respond(problem, headers=getattr(exc, "headers", None))

    @app.exception_handler(MessageRejected)
    async def message_rejected_handler(request: Request, exc: MessageRejected) -> JSONResponse:
        http_exc = exc.to_http_exception()
        logger.info(
            "[ROUTER] Send rejected over REST: %s",
            exc.reason.value,
            extra={"path": request.url.path, "reason": exc.reason.value},
        )
        problem = _problem(
            request,
            http_exc.status_code,
            detail=exc.message,
            code=exc.code,
            errors=exc.details,
            reason=exc.reason.value,
        )
        return _respond(problem)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        http_exc = exc.to_http_exception()
        if http_exc.status_code >= 500:
            logger.error("Domain error on %s: %s", request.url.path, exc.message)
        detail, code, errors = _split_detail(http_exc.detail)
        return _respond(_problem(request, http_exc.status_code, detail=detail, code=code, errors=errors))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _respond(
            _problem(
                request,
                422,
                detail="Request validation failed",
                code="validation_error",
                errors=exc.errors(),
            )
        )

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _respond(
            _problem(request, 422, detail="Validation failed", code="validation_error", errors=exc.errors())
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return _respond(
            _problem(request, 500, detail="Internal Server Error", code="internal_server_error")
        )
