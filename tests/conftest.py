"""Shared fixtures: a throwaway SQLite database per test plus fake collaborators."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator

import pytest

from telecare.core.db import Database
from telecare.core.errors import BackendUnavailable, NotificationError
from telecare.core.security import Principal, Role
from telecare.modules.appointments.schemas import AppointmentCreate
from telecare.modules.appointments.service import AppointmentService
from telecare.platform.adapters.session_memory import InMemorySessionBackend
from telecare.platform.ports.notifier import OutboundEnvelope

ORG = "org-1"
PROVIDER = "dr.grey@clinic.test"
OTHER_PROVIDER = "dr.shepherd@clinic.test"
CLIENT = "meredith@example.test"


def at(hour: int, minute: int = 0, day: int = 7) -> datetime:
    """An instant on a fixed future date, so nothing collides with the real clock."""
    return datetime(2031, 1, day, hour, minute, tzinfo=timezone.utc)


class CountingBackend(InMemorySessionBackend):
    """In-memory backend that records calls and yields during creation to widen race windows."""

    def __init__(self):
        super().__init__()
        self.created = 0
        self.deleted: list[str] = []

    async def create_session(self, first_participant_id: str):
        self.created += 1
        await asyncio.sleep(0.01)
        return await super().create_session(first_participant_id)

    async def delete_session(self, session_id: str) -> None:
        self.deleted.append(session_id)
        await super().delete_session(session_id)


class FailingTeardownBackend(CountingBackend):
    async def delete_session(self, session_id: str) -> None:
        self.deleted.append(session_id)
        raise BackendUnavailable("backend is down")


class RecordingNotifier:
    def __init__(self, fail_for: tuple[str, ...] = ()):
        self.sent: list[OutboundEnvelope] = []
        self.fail_for = set(fail_for)

    async def send(self, envelope: OutboundEnvelope) -> None:
        if envelope.recipient in self.fail_for:
            raise NotificationError(f"relay refused {envelope.recipient}")
        self.sent.append(envelope)

    def to(self, recipient: str) -> list[OutboundEnvelope]:
        return [e for e in self.sent if e.recipient == recipient]


@pytest.fixture
async def db(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """File-backed SQLite so that concurrent sessions see each other's commits."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'telecare.db'}")
    await database.init(manage="create_all")
    yield database
    await database.close()


@pytest.fixture
async def session(db: Database):
    async with db.session() as s:
        yield s


@pytest.fixture
def backend() -> CountingBackend:
    return CountingBackend()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def provider() -> Principal:
    return Principal(identity=PROVIDER, role=Role.PROVIDER, org_id=ORG)


@pytest.fixture
def admin() -> Principal:
    return Principal(identity="root@clinic.test", role=Role.SYSTEM_ADMIN, org_id=ORG)


@pytest.fixture
def appointments(session, backend, notifier) -> AppointmentService:
    return AppointmentService(session, notifier=notifier, session_backend=backend)


@pytest.fixture
def booking():
    """Factory for booking payloads with sensible defaults."""

    def make(start: datetime, end: datetime, **overrides) -> AppointmentCreate:
        data = {
            "start_time": start,
            "end_time": end,
            "provider_identity": PROVIDER,
            "provider_name": "Dr. Grey",
            "client_email": CLIENT,
            "client_name": "Meredith",
            "org_id": ORG,
        }
        data.update(overrides)
        return AppointmentCreate(**data)

    return make
