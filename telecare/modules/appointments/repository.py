import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_
from telecare.core.base import utcnow
from telecare.core.errors import InvalidWindow, storage_errors
from telecare.modules.appointments.windows import overlap_clause
from telecare.modules.appointments.models import Appointment

def check_window(start: datetime, end: datetime) -> None:
    if not start < end:
        raise InvalidWindow("Start time must be before end time", start_time=start.isoformat(), end_time=end.isoformat())

class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @storage_errors
    async def create(self, org_id: str, **data) -> Appointment:
        check_window(data["start_time"], data["end_time"])
        obj = Appointment(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    @storage_errors
    async def get(self, appt_id: uuid.UUID) -> Appointment | None:
        q = select(Appointment).where(
            and_(Appointment.id == appt_id,
                 Appointment.deleted_at.is_(None))
        ).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    @storage_errors
    async def search(self, scope: dict, *, start: datetime | None = None, end: datetime | None = None, client_mrn: str | None = None, limit: int = 20, offset: int = 0) -> Sequence[Appointment]:
        cond = [Appointment.deleted_at.is_(None)]
        for field, value in scope.items():
            cond.append(getattr(Appointment, field) == value)
        if start is not None and end is not None:
            cond.append(overlap_clause(start, end))
        elif start is not None:
            cond.append(Appointment.end_time > start)
        elif end is not None:
            cond.append(Appointment.start_time < end)
        if client_mrn:
            cond.append(Appointment.client_mrn == client_mrn)
        q = select(Appointment).where(and_(*cond)).order_by(Appointment.start_time.desc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    @storage_errors
    async def find_overlapping(self, start: datetime, end: datetime, *, provider_identity: str | None = None, department_id: str | None = None, exclude_id: uuid.UUID | None = None, limit: int | None = None) -> list[Appointment]:
        cond = [Appointment.deleted_at.is_(None), overlap_clause(start, end)]
        if provider_identity:
            cond.append(Appointment.provider_identity == provider_identity)
        if department_id:
            cond.append(Appointment.department_id == department_id)
        if exclude_id is not None:
            cond.append(Appointment.id != exclude_id)
        q = select(Appointment).where(and_(*cond)).order_by(Appointment.start_time.desc())
        if limit:
            q = q.limit(limit)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    @storage_errors
    async def soft_delete(self, obj: Appointment) -> None:
        obj.deleted_at = utcnow()
        obj.status = "cancelled"
        await self.session.flush()

    @storage_errors
    async def stamp_session(self, appt_id: uuid.UUID, backend_session_id: str) -> None:
        await self.session.execute(
            update(Appointment)
            .where(Appointment.id == appt_id)
            .values(backend_session_id=backend_session_id, updated_at=utcnow())
        )

    @storage_errors
    async def due_for_reminder(self, now: datetime, until: datetime, limit: int = 200) -> Sequence[Appointment]:
        q = select(Appointment).where(
            and_(Appointment.deleted_at.is_(None),
                 Appointment.status == "booked",
                 Appointment.reminder_sent.is_(False),
                 Appointment.start_time >= now,
                 Appointment.start_time < until)
        ).order_by(Appointment.start_time.asc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    @storage_errors
    async def mark_reminder_sent(self, appt_id: uuid.UUID) -> bool:
        res = await self.session.execute(
            update(Appointment)
            .where(and_(Appointment.id == appt_id, Appointment.reminder_sent.is_(False)))
            .values(reminder_sent=True, updated_at=utcnow())
        )
        return res.rowcount == 1
