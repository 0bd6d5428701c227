# app/core/exceptions.py
from fastapi import HTTPException


class DomainError(HTTPException):
    """HTTPException carrying a stable machine-readable error code."""

    status_code = 400
    code = "ERROR"

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidStateError(DomainError):
    status_code = 400
    code = "INVALID_STATE"


class ForbiddenError(DomainError):
    status_code = 403
    code = "FORBIDDEN"


class ConflictError(DomainError):
    status_code = 409
    code = "CONFLICT"


class DomainValidationError(DomainError):
    status_code = 422
    code = "VALIDATION_ERROR"


# status codes raised as plain HTTPException (auth, routing) keep a code too
STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
}


def error_code_for(exc: HTTPException) -> str:
    if isinstance(exc, DomainError):
        return exc.code
    return STATUS_CODES.get(exc.status_code, "ERROR")
