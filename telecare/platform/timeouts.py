import asyncio
from typing import Awaitable, TypeVar
from telecare.core.config import settings
from telecare.core.errors import BackendUnavailable

T = TypeVar("T")

async def bounded(call: Awaitable[T], *, what: str, timeout: float | None = None) -> T:
    """Await an outbound provider call with the configured deadline."""
    try:
        return await asyncio.wait_for(call, timeout or settings.BACKEND_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as e:
        raise BackendUnavailable(f"{what} timed out") from e
