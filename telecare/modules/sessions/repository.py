import uuid
from datetime import datetime
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession
from telecare.core.base import utcnow
from telecare.core.errors import storage_errors
from telecare.modules.sessions.models import SessionTicket, SessionInvite, TICKET_SCHEDULED, TICKET_STARTED

class TicketRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @storage_errors
    async def create(self, org_id: str, appointment_id: uuid.UUID, scheduled_at: datetime, invites: list[tuple[str, str, str]]) -> SessionTicket:
        obj = SessionTicket(
            org_id=org_id,
            appointment_id=appointment_id,
            scheduled_at=scheduled_at,
            status=TICKET_SCHEDULED,
            invites=[SessionInvite(org_id=org_id, role=role, subject_identity=subject, token=token) for role, subject, token in invites],
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    @storage_errors
    async def get_for_appointment(self, appointment_id: uuid.UUID) -> SessionTicket | None:
        q = select(SessionTicket).where(
            and_(SessionTicket.appointment_id == appointment_id,
                 SessionTicket.deleted_at.is_(None))
        ).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    @storage_errors
    async def get_by_token(self, token: str) -> SessionTicket | None:
        q = (
            select(SessionTicket)
            .join(SessionInvite, SessionInvite.ticket_id == SessionTicket.id)
            .where(and_(SessionInvite.token == token,
                        SessionTicket.deleted_at.is_(None)))
        ).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    @storage_errors
    async def refresh_state(self, ticket: SessionTicket) -> SessionTicket:
        await self.session.refresh(ticket, attribute_names=["status", "backend_session_id", "started_at", "deleted_at"])
        return ticket

    @storage_errors
    async def mark_started(self, ticket_id: uuid.UUID, backend_session_id: str) -> bool:
        """Conditional scheduled -> started transition; False when another caller won."""
        res = await self.session.execute(
            update(SessionTicket)
            .where(and_(SessionTicket.id == ticket_id,
                        SessionTicket.status == TICKET_SCHEDULED,
                        SessionTicket.deleted_at.is_(None)))
            .values(status=TICKET_STARTED, backend_session_id=backend_session_id, started_at=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    @storage_errors
    async def hold_scheduled(self, ticket_id: uuid.UUID) -> bool:
        """Write-lock the ticket row until commit; False when it is no longer scheduled."""
        res = await self.session.execute(
            update(SessionTicket)
            .where(and_(SessionTicket.id == ticket_id,
                        SessionTicket.status == TICKET_SCHEDULED,
                        SessionTicket.deleted_at.is_(None)))
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    @storage_errors
    async def set_invite(self, ticket: SessionTicket, role: str, subject: str | None, token: str | None) -> SessionInvite | None:
        current = next((i for i in ticket.invites if i.role == role), None)
        if subject is None:
            if current is not None:
                ticket.invites.remove(current)
            await self.session.flush()
            return None
        if current is None:
            current = SessionInvite(org_id=ticket.org_id, role=role, subject_identity=subject, token=token)
            ticket.invites.append(current)
        else:
            current.subject_identity = subject
            current.token = token
        await self.session.flush()
        return current

    @storage_errors
    async def drop(self, ticket: SessionTicket) -> None:
        await self.session.delete(ticket)
        await self.session.flush()

    @storage_errors
    async def release(self, ticket: SessionTicket) -> None:
        ticket.deleted_at = utcnow()
        await self.session.flush()

    @storage_errors
    async def move(self, ticket: SessionTicket, scheduled_at: datetime) -> bool:
        if ticket.status != TICKET_SCHEDULED:
            return False
        ticket.scheduled_at = scheduled_at
        await self.session.flush()
        return True
