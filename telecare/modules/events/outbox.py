import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.errors import storage_errors
from telecare.modules.events.models import EventOutbox
from telecare.platform.provider_registry import registry

log = logging.getLogger("event.outbox")

TOPIC = "telecare.events"

# Event types
APPT_BOOKED = "APPT_BOOKED"
APPT_RESCHEDULED = "APPT_RESCHEDULED"
APPT_CANCELLED = "APPT_CANCELLED"
SESSION_STARTED = "SESSION_STARTED"
REMINDER_SENT = "REMINDER_SENT"

def _now() -> datetime:
    return datetime.now(timezone.utc)

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @storage_errors
    async def enqueue(self, org_id: str, *, event_type: str, subject_type: str, subject_id: str, payload: dict) -> EventOutbox:
        obj = EventOutbox(
            org_id=org_id,
            event_type=event_type,
            subject_type=subject_type,
            subject_id=str(subject_id),
            payload=payload,
            occurred_at=_now(),
            status="pending",
            attempts=0,
            next_attempt_at=_now(),
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_batch(self, limit: int = 50) -> list[EventOutbox]:
        q = (
            select(EventOutbox)
            .where(
                and_(
                    EventOutbox.deleted_at.is_(None),
                    EventOutbox.status == "pending",
                    EventOutbox.next_attempt_at <= _now(),
                )
            )
            .order_by(EventOutbox.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        rows = list(res.scalars().all())
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def mark_sent(self, obj: EventOutbox):
        obj.status = "sent"
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: EventOutbox, error: str):
        obj.status = "pending"  # retry
        obj.attempts = (obj.attempts or 0) + 1
        backoff = min(60, 2 ** min(obj.attempts, 6))  # 2,4,8,16,32,60s
        obj.next_attempt_at = _now() + timedelta(seconds=backoff)
        obj.last_error = error[:2000]
        await self.session.flush()

class OutboxService:
    """Records domain events in the caller's transaction; the relay publishes them later."""

    def __init__(self, session: AsyncSession):
        self.repo = OutboxRepository(session)

    async def enqueue(self, org_id: str, event_type: str, subject_type: str, subject_id, payload: dict) -> EventOutbox:
        return await self.repo.enqueue(org_id, event_type=event_type, subject_type=subject_type, subject_id=str(subject_id), payload=payload)

def _envelope(ev: EventOutbox) -> dict:
    return {
        "org_id": ev.org_id,
        "event_type": ev.event_type,
        "subject": {"type": ev.subject_type, "id": ev.subject_id},
        "payload": ev.payload,
        "occurred_at": ev.occurred_at.isoformat(),
        "outbox_id": str(ev.id),
    }

async def relay_once(session: AsyncSession, bus=None, limit: int = 50) -> int:
    """Publish one claimed batch. Returns how many events were published."""
    bus = bus or registry.event_bus()
    repo = OutboxRepository(session)
    batch = await repo.claim_batch(limit=limit)
    published = 0
    for ev in batch:
        try:
            await bus.publish(topic=TOPIC, key=ev.subject_id or "-", value=_envelope(ev))
            await repo.mark_sent(ev)
            published += 1
        except Exception as ex:
            log.exception("Publish failed for outbox event %s", ev.id)
            await repo.mark_failed(ev, error=str(ex))
    await session.commit()
    return published

async def run_outbox_relay(db, poll_interval_seconds: float = 1.0):
    bus = registry.event_bus()
    log.info("Outbox relay started with bus=%s", bus.__class__.__name__)
    try:
        while True:
            async with db.session() as session:
                try:
                    published = await relay_once(session, bus)
                except Exception:
                    log.exception("Outbox relay iteration failed")
                    await session.rollback()
                    published = 0
            if not published:
                await asyncio.sleep(poll_interval_seconds)
            else:
                await asyncio.sleep(0)  # yield
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
