import logging
import httpx
from telecare.core.config import settings
from telecare.core.errors import NotificationError
from telecare.platform.ports.notifier import NotifierPort, OutboundEnvelope

log = logging.getLogger("notify.webhook")

class WebhookNotifier(NotifierPort):
    """Hands rendered messages to an external mail relay over HTTP."""

    def __init__(self, url: str | None = None, timeout: float | None = None):
        self.url = url or settings.NOTIFY_WEBHOOK_URL
        if not self.url:
            raise RuntimeError("NOTIFY_WEBHOOK_URL not configured")
        self.timeout = timeout or settings.BACKEND_TIMEOUT_SECONDS

    async def send(self, envelope: OutboundEnvelope) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=envelope.model_dump())
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(f"Relay rejected message: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Relay unreachable: {e}") from e
        log.debug(f"[WEBHOOK NOTIFY] delivered kind={envelope.template_kind} to={envelope.recipient}")
