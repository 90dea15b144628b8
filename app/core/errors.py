"""
Domain exceptions for the card engine and their FastAPI handlers.

Services raise these without knowing about HTTP; the API layer maps them
to status codes in register_exception_handlers().

    CardProgramError
    ├── ValidationError          malformed input, nothing written
    │   ├── RangeExhaustedError  request exceeds the configured range
    │   └── InvariantViolation   illegal lifecycle transition
    ├── ConflictError            uniqueness violation or lost update race
    ├── PartialBatchFailure      bulk insert stopped partway
    ├── NotFoundError
    └── ForbiddenError

StaleReadWarning is a Warning, not an error: the version reconciler emits it
when local data is behind and never raises it.
"""

import re
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError

UNIQUE_VIOLATION = "23505"
_KEY_DETAIL = re.compile(r"Key \(([^)]+)\)=\((.*?)\)")


class CardProgramError(Exception):
    """Base exception for all card engine errors."""

    error_type = "card_program_error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


class ValidationError(CardProgramError):
    """Raised for malformed input. Always recoverable, nothing was written."""

    error_type = "validation_error"

    def __init__(self, field: str, detail: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"{field}: {detail}")


class RangeExhaustedError(ValidationError):
    """Raised when a request needs more codes than the configured range allows."""

    error_type = "range_exhausted"

    def __init__(self, field: str, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            field,
            f"range exhausted: requested {requested}, only {available} available",
            value=requested,
        )


class InvariantViolation(ValidationError):
    """Raised when a transition would break a card lifecycle invariant."""

    error_type = "invariant_violation"

    def __init__(self, card_id: str | None, detail: str, field: str = "status"):
        self.card_id = card_id
        super().__init__(field, detail, value=card_id)


class ConflictError(CardProgramError):
    """Raised when a write collides with existing data.

    Callers should regenerate a fresh candidate rather than retry the same value.
    """

    error_type = "conflict"

    def __init__(self, field: str, value: Any, detail: str | None = None):
        self.field = field
        self.value = value
        super().__init__(detail or f"{field} '{value}' already exists")


class PartialBatchFailure(CardProgramError):
    """Raised when a bulk insert stops before all rows were written.

    Successful chunks are not rolled back; the caller decides whether to resume.
    """

    error_type = "partial_batch"

    def __init__(self, batch_id: str, requested: int, inserted: int, cause: Exception | None = None):
        self.batch_id = batch_id
        self.requested = requested
        self.inserted = inserted
        self.cause = cause
        super().__init__(
            f"Batch {batch_id} partially generated: {inserted} of {requested} cards inserted"
        )

    @property
    def result(self) -> dict:
        return {"requested": self.requested, "inserted": self.inserted}


class NotFoundError(CardProgramError):
    error_type = "not_found"

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found")


class ForbiddenError(CardProgramError):
    error_type = "forbidden"


class StaleReadWarning(Warning):
    """Local snapshot of a component is behind the stored version."""

    def __init__(self, component: str, local_version: int, remote_version: int):
        self.component = component
        self.local_version = local_version
        self.remote_version = remote_version
        super().__init__(
            f"{component} changed remotely (v{local_version} -> v{remote_version})"
        )


def is_unique_violation(error: APIError) -> bool:
    """Check whether a PostgREST error is a unique constraint violation."""
    return getattr(error, "code", None) == UNIQUE_VIOLATION or UNIQUE_VIOLATION in str(error)


def unique_violation_key(error: APIError) -> tuple[str, str] | None:
    """Column and value named by a unique violation, e.g. ("printed_control_number", "MOC-005000").

    Postgres reports them as: Key (printed_control_number)=(MOC-005000) already exists.
    """
    match = _KEY_DETAIL.search(str(getattr(error, "details", None) or error))
    if not match:
        return None
    return match.group(1), match.group(2)


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions to JSON responses of the form {"detail", "error_type"}."""

    def _body(exc: CardProgramError, **extra) -> dict:
        return {"detail": exc.detail, "error_type": exc.error_type, **extra}

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content=_body(exc, field=exc.field))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content=_body(exc, field=exc.field))

    @app.exception_handler(PartialBatchFailure)
    async def partial_batch_handler(request: Request, exc: PartialBatchFailure) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content=_body(exc, batch_id=exc.batch_id, **exc.result),
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_body(exc))

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
        return JSONResponse(status_code=403, content=_body(exc))
