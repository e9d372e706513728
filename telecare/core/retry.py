import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .config import settings
from .errors import DomainError

log = logging.getLogger(__name__)

T = TypeVar("T")

async def retry_read(
    call: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    on_retry: Callable[[], Awaitable[None]] | None = None,
) -> T:
    """Run an idempotent read, retrying retryable failures with exponential backoff.

    Never wrap a mutation in this: a retried write may duplicate its side effects.
    ``on_retry`` runs before each new attempt (e.g. rolling back a poisoned session).
    """
    attempts = attempts or settings.READ_RETRY_ATTEMPTS
    base_delay = settings.READ_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except DomainError as e:
            if not e.retryable or attempt == attempts:
                raise
            delay = min(5.0, base_delay * (2 ** (attempt - 1)))
            log.warning("Retryable read failure (%s), attempt %d/%d; retrying in %.2fs", e.code, attempt, attempts, delay)
            if on_retry is not None:
                await on_retry()
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
