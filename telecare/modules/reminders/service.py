"""Periodic sweep that reminds clients of appointments about to start.

Delivery is at-least-once: the ``reminder_sent`` flag is set only after the
dispatcher confirmed the hand-off, so a failed send is picked up again by the
next sweep for as long as the appointment stays inside the look-ahead window.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.base import utcnow, as_utc
from telecare.core.config import settings
from telecare.core.retry import retry_read
from telecare.modules.appointments.repository import AppointmentRepository
from telecare.modules.appointments.service import message_variables
from telecare.modules.clients.service import ClientRecordService
from telecare.modules.events.outbox import OutboxService, REMINDER_SENT
from telecare.modules.notifications.service import NotificationsService
from telecare.modules.notifications.templates import APPOINTMENT_REMINDER
from telecare.platform.ports.notifier import NotifierPort

log = logging.getLogger(__name__)

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"

@dataclass
class ReminderCandidate:
    appointment_id: uuid.UUID
    org_id: str
    start_time: datetime
    recipient: str | None
    client_record_id: uuid.UUID | None
    variables: dict
    outcome: str | None = None

class ReminderScanner:
    def __init__(self, session: AsyncSession, notifier: NotifierPort | None = None, window: timedelta | None = None):
        self.session = session
        self.appts = AppointmentRepository(session)
        self.clients = ClientRecordService(session)
        self.outbox = OutboxService(session)
        self.notifications = NotificationsService(session, notifier=notifier)
        self.window = window if window is not None else timedelta(minutes=settings.REMINDER_WINDOW_MINUTES)

    async def scan(self, now: datetime | None = None) -> list[ReminderCandidate]:
        now = as_utc(now) if now is not None else utcnow()
        due = await retry_read(lambda: self.appts.due_for_reminder(now, now + self.window), on_retry=self.session.rollback)
        # snapshot before any per-candidate commit/rollback expires the rows
        candidates = [
            ReminderCandidate(
                appointment_id=a.id,
                org_id=a.org_id,
                start_time=a.start_time,
                recipient=a.client_email,
                client_record_id=a.client_record_id,
                variables=message_variables(a),
            )
            for a in due
        ]
        for c in candidates:
            try:
                c.outcome = await self._remind(c)
            except Exception:
                # one bad candidate must not stop the sweep
                log.exception("Reminder for appointment %s failed", c.appointment_id)
                await self.session.rollback()
                c.outcome = FAILED
        if candidates:
            log.info("Reminder sweep at %s: %s", now.isoformat(), {o: sum(1 for c in candidates if c.outcome == o) for o in (SENT, FAILED, SKIPPED)})
        return candidates

    async def _remind(self, c: ReminderCandidate) -> str:
        if not c.recipient:
            c.recipient = await self.clients.contact_email(c.org_id, c.client_record_id)
        if not c.recipient:
            log.warning("Skipping reminder for appointment %s: no contact address", c.appointment_id)
            return SKIPPED
        msg = await self.notifications.send(c.org_id, template_kind=APPOINTMENT_REMINDER, recipient=c.recipient, subject=None, variables=c.variables)
        if msg.status != SENT:
            # keep the flag clear so the next sweep retries
            await self.session.commit()
            return FAILED
        if await self.appts.mark_reminder_sent(c.appointment_id):
            await self.outbox.enqueue(c.org_id, REMINDER_SENT, "appointment", c.appointment_id, {"recipient": c.recipient})
        await self.session.commit()
        return SENT

async def run_reminder_loop(db, interval: float | None = None, notifier: NotifierPort | None = None):
    interval = interval or settings.REMINDER_SCAN_INTERVAL_SECONDS
    log.info("Reminder loop started (every %ss, window %smin)", interval, settings.REMINDER_WINDOW_MINUTES)
    try:
        while True:
            async with db.session() as session:
                try:
                    await ReminderScanner(session, notifier=notifier).scan()
                except Exception:
                    log.exception("Reminder sweep failed")
                    await session.rollback()
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        log.info("Reminder loop cancelled; shutting down")
        raise
