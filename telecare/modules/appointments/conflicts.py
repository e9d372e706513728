import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from telecare.modules.appointments.models import Appointment
from telecare.modules.appointments.repository import AppointmentRepository
from telecare.modules.appointments.windows import buffered, default_buffer

@dataclass(frozen=True)
class ConflictScope:
    """Provider and/or department the search is restricted to; neither means the open set."""
    provider_identity: str | None = None
    department_id: str | None = None

    def lock_keys(self) -> list[str]:
        keys = []
        if self.provider_identity:
            keys.append(f"provider:{self.provider_identity}")
        if self.department_id:
            keys.append(f"department:{self.department_id}")
        return keys or ["open"]

class ConflictChecker:
    def __init__(self, session: AsyncSession, buffer: timedelta | None = None):
        self.appts = AppointmentRepository(session)
        self.buffer = default_buffer() if buffer is None else buffer

    async def find_conflicts(self, start: datetime, end: datetime, scope: ConflictScope, exclude_id: uuid.UUID | None = None, limit: int | None = None) -> list[Appointment]:
        bs, be = buffered(start, end, self.buffer)
        return await self.appts.find_overlapping(
            bs, be,
            provider_identity=scope.provider_identity,
            department_id=scope.department_id,
            exclude_id=exclude_id,
            limit=limit,
        )

    async def has_conflict(self, start: datetime, end: datetime, scope: ConflictScope, exclude_id: uuid.UUID | None = None) -> bool:
        # existence only; the first matching row is enough
        return bool(await self.find_conflicts(start, end, scope, exclude_id=exclude_id, limit=1))
