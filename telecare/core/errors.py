"""Error taxonomy shared by the scheduling and admission modules.

Validation and authorization errors surface immediately. ``StorageError`` and
``BackendUnavailable`` are infrastructure failures the caller may retry; only
idempotent reads are retried automatically (see ``telecare.core.retry``).
Admission denials are not errors, see ``DenialReason`` in the sessions module.
"""
import asyncio
import functools
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

log = logging.getLogger(__name__)


class DomainError(Exception):
    status_code: int = 400
    code: str = "domain_error"
    retryable: bool = False

    def __init__(self, message: str | None = None, **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


class InvalidWindow(DomainError):
    status_code = 422
    code = "invalid_window"


class SlotConflict(DomainError):
    status_code = 409
    code = "slot_conflict"

    def __init__(self, message: str | None = None, conflicting_ids: list[str] | None = None):
        super().__init__(message or "Appointment is already booked in the time frame", conflicting_ids=conflicting_ids or [])
        self.conflicting_ids = conflicting_ids or []


class NotScheduled(DomainError):
    status_code = 404
    code = "not_scheduled"


class SessionStarted(DomainError):
    status_code = 409
    code = "session_started"


class InvalidToken(DomainError):
    status_code = 401
    code = "invalid_token"


class Unauthorized(DomainError):
    status_code = 403
    code = "unauthorized"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class StorageError(DomainError):
    status_code = 503
    code = "storage_error"
    retryable = True


class BackendUnavailable(DomainError):
    status_code = 503
    code = "backend_unavailable"
    retryable = True


class NotificationError(DomainError):
    status_code = 502
    code = "notification_failed"
    retryable = True


def storage_errors(fn):
    """Translate driver/ORM failures raised by a repository coroutine into ``StorageError``."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except DomainError:
            raise
        except (SQLAlchemyError, asyncio.TimeoutError, OSError) as e:
            log.error("Storage call %s failed: %s", fn.__qualname__, e)
            raise StorageError(f"Storage call failed: {fn.__name__}") from e

    return wrapper
