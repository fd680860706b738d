from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from backoffice.context import get_correlation_id


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


class EngineError(HTTPException):
    """Base for engine failures. Each carries a machine-readable code."""

    status_code_default = status.HTTP_400_BAD_REQUEST
    code_default = "ENGINE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: Any = None) -> None:
        self.code = code or self.code_default
        self.message = message
        self.details = details
        super().__init__(
            status_code=self.status_code_default,
            detail={"code": self.code, "message": message, "details": details},
        )


class NotFoundError(EngineError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code_default = "NOT_FOUND"


class UnauthenticatedError(EngineError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code_default = "UNAUTHENTICATED"


class ForbiddenError(EngineError):
    status_code_default = status.HTTP_403_FORBIDDEN
    code_default = "FORBIDDEN"


class ValidationError(EngineError):
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    code_default = "VALIDATION_ERROR"


class ConflictError(EngineError):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "CONFLICT"


class InvalidTransitionError(EngineError):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "INVALID_TRANSITION"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(code=code, message=message, details=details, correlation_id=correlation_id)
    return JSONResponse(status_code=status_code, content=asdict(payload))


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )
