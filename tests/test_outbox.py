import pytest
from sqlalchemy import select

from telecare.modules.events.models import EventOutbox
from telecare.modules.events.outbox import APPT_BOOKED, TOPIC, OutboxService, relay_once

from conftest import ORG


class RecordingBus:
    def __init__(self, fail: bool = False):
        self.published = []
        self.fail = fail

    async def publish(self, topic, key, value, headers=None):
        if self.fail:
            raise ConnectionError("bus unreachable")
        self.published.append((topic, key, value))

    async def close(self):
        return None


class TestOutboxRelay:
    @pytest.mark.asyncio
    async def test_pending_events_are_published_once(self, session):
        await OutboxService(session).enqueue(ORG, APPT_BOOKED, "appointment", "a-1", {"k": "v"})
        await session.commit()
        bus = RecordingBus()

        assert await relay_once(session, bus) == 1
        assert await relay_once(session, bus) == 0
        topic, key, value = bus.published[0]
        assert (topic, key) == (TOPIC, "a-1")
        assert value["event_type"] == APPT_BOOKED
        assert value["payload"] == {"k": "v"}

    @pytest.mark.asyncio
    async def test_failed_publish_is_rescheduled(self, session):
        await OutboxService(session).enqueue(ORG, APPT_BOOKED, "appointment", "a-1", {})
        await session.commit()

        assert await relay_once(session, RecordingBus(fail=True)) == 0
        row = (await session.execute(select(EventOutbox))).scalar_one()
        assert row.status == "pending"
        assert row.attempts == 1
        assert "bus unreachable" in row.last_error
        # backoff keeps it out of the very next batch
        assert await relay_once(session, RecordingBus()) == 0


class TestBusAdapters:
    @pytest.mark.asyncio
    async def test_redis_bus_appends_to_stream(self):
        from unittest.mock import AsyncMock

        from telecare.platform.adapters.bus_redis import RedisEventBus

        bus = RedisEventBus(url="redis://localhost:6379/0", stream="test.events")
        bus.redis = AsyncMock()
        bus.redis.xadd.return_value = "1-0"
        await bus.publish(TOPIC, "a-1", {"event_type": APPT_BOOKED, "org_id": ORG, "payload": {}})

        stream, fields = bus.redis.xadd.call_args.args
        assert stream == "test.events"
        assert fields["event_type"] == APPT_BOOKED
        assert "headers" not in fields
        await bus.close()
        bus.redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_noop_bus_accepts_envelopes(self, session):
        from telecare.platform.adapters.bus_noop import NoopEventBus

        await OutboxService(session).enqueue(ORG, APPT_BOOKED, "appointment", "a-1", {})
        await session.commit()
        assert await relay_once(session, NoopEventBus()) == 1
