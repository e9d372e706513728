import logging
from telecare.platform.ports.notifier import NotifierPort, OutboundEnvelope

log = logging.getLogger("notify.log")

class LogNotifier(NotifierPort):
    async def send(self, envelope: OutboundEnvelope) -> None:
        log.info(f"[LOG NOTIFY] kind={envelope.template_kind} to={envelope.recipient} subject={envelope.subject!r}")
