import json
import logging
from telecare.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Logs domain events instead of publishing them (local dev, single-node deployments)."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        subject = value.get("subject") or {}
        log.info(f"[NOOP BUS] {value.get('event_type', '?')} {subject.get('type', '-')}/{key} topic={topic}")
        log.debug(f"[NOOP BUS] payload={json.dumps(value.get('payload'), default=str)} headers={headers or {}}")

    async def close(self) -> None:
        return None
