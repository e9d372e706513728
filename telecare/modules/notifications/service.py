import logging
from sqlalchemy.ext.asyncio import AsyncSession
from telecare.core.config import settings
from telecare.core.errors import DomainError, storage_errors
from telecare.modules.notifications.models import OutboundMessage
from telecare.modules.notifications.templates import render
from telecare.platform.ports.notifier import NotifierPort, OutboundEnvelope
from telecare.platform.provider_registry import registry
from telecare.platform.timeouts import bounded

logger = logging.getLogger(__name__)

class NotificationsService:
    """Renders and hands off a message, recording the attempt.

    ``send`` never raises for delivery problems: the returned record's
    ``status`` is ``sent`` only when the dispatcher confirmed the hand-off.
    The caller owns the transaction.
    """

    def __init__(self, s: AsyncSession, notifier: NotifierPort | None = None):
        self.s = s
        self.notifier = notifier or registry.notifier()

    @storage_errors
    async def _record(self, msg: OutboundMessage) -> OutboundMessage:
        self.s.add(msg)
        await self.s.flush()
        return msg

    async def send(self, org: str, *, template_kind: str, recipient: str, subject: str | None, variables: dict | None) -> OutboundMessage:
        variables = {k: ("" if v is None else v) for k, v in (variables or {}).items()}
        rendered_subject, rendered_body = render(template_kind, subject, variables)
        envelope = OutboundEnvelope(
            template_kind=template_kind,
            recipient=recipient,
            sender=settings.NOTIFY_FROM_ADDRESS,
            subject=rendered_subject,
            body=rendered_body,
            variables=variables,
        )
        msg = OutboundMessage(org_id=org, template_kind=template_kind, to=recipient, subject=rendered_subject, body=rendered_body, meta=variables, status="queued")
        try:
            await bounded(self.notifier.send(envelope), what="notification dispatch")
            msg.status = "sent"
        except DomainError as e:
            logger.error(f"Dispatch of {template_kind} to {recipient} failed: {e.message}")
            msg.status = "failed"
            msg.error = e.message
        return await self._record(msg)
