import logging
import uuid
from datetime import datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.base import utcnow, as_utc
from telecare.core.config import settings
from telecare.core.errors import DomainError, NotScheduled, InvalidToken, SessionStarted, StorageError
from telecare.core.locks import KeyedLock, ticket_locks
from telecare.core.retry import retry_read
from telecare.modules.appointments.models import Appointment
from telecare.modules.appointments.repository import AppointmentRepository
from telecare.modules.events.outbox import OutboxService, SESSION_STARTED
from telecare.modules.sessions.models import SessionTicket, SessionInvite, TICKET_STARTED
from telecare.modules.sessions.repository import TicketRepository
from telecare.modules.sessions.schemas import AdmissionResult, DenialReason
from telecare.modules.sessions.tokens import JoinTokenCodec
from telecare.platform.ports.session_backend import SessionBackendPort
from telecare.platform.provider_registry import registry
from telecare.platform.timeouts import bounded

log = logging.getLogger(__name__)

ROLE_PROVIDER = "provider"
ROLE_CLIENT = "client"


class TicketService:
    """Opens, moves and releases the ticket behind a calling-enabled appointment."""

    def __init__(self, session: AsyncSession, tokens: JoinTokenCodec | None = None):
        self.session = session
        self.tickets = TicketRepository(session)
        self.tokens = tokens or JoinTokenCodec()

    async def open_for(self, appt: Appointment) -> SessionTicket:
        existing = await self.tickets.get_for_appointment(appt.id)
        if existing is not None:
            return existing
        invites = [(ROLE_PROVIDER, appt.provider_identity, self.tokens.issue(appt.provider_identity, appt.id, ROLE_PROVIDER))]
        if appt.client_email:
            invites.append((ROLE_CLIENT, appt.client_email, self.tokens.issue(appt.client_email, appt.id, ROLE_CLIENT)))
        ticket = await self.tickets.create(appt.org_id, appt.id, appt.start_time, invites)
        log.info("Opened session ticket %s for appointment %s (%d invitees)", ticket.id, appt.id, len(invites))
        return ticket

    async def sync_parties(self, appt: Appointment) -> list[SessionInvite]:
        """Bring the roster in line with the appointment's parties.

        Replaced or added invitees get a freshly issued token so the previous
        holder's link stops working. Returns the invites that need a new
        invitation. A started session keeps its roster.
        """
        ticket = await self.tickets.get_for_appointment(appt.id)
        if ticket is None:
            return []
        wanted = {ROLE_PROVIDER: appt.provider_identity, ROLE_CLIENT: appt.client_email}
        current = {i.role: i.subject_identity for i in ticket.invites}
        stale = [role for role, subject in wanted.items() if current.get(role) != subject]
        if not stale:
            return []
        if not await self.tickets.hold_scheduled(ticket.id):
            raise SessionStarted(f"Session for appointment {appt.id} has started; its participants cannot change", appointment_id=str(appt.id))
        changed = []
        for role in stale:
            subject = wanted[role]
            token = self.tokens.issue(subject, appt.id, role) if subject else None
            invite = await self.tickets.set_invite(ticket, role, subject, token)
            if invite is not None:
                changed.append(invite)
        log.info("Updated roster of ticket %s for appointment %s (roles: %s)", ticket.id, appt.id, ", ".join(stale))
        return changed

    async def withdraw(self, appointment_id: uuid.UUID) -> bool:
        """Drop a scheduled ticket when calling is switched off; its tokens go with it."""
        ticket = await self.tickets.get_for_appointment(appointment_id)
        if ticket is None:
            return False
        if not await self.tickets.hold_scheduled(ticket.id):
            raise SessionStarted(f"Session for appointment {appointment_id} has started; calling cannot be switched off", appointment_id=str(appointment_id))
        await self.tickets.drop(ticket)
        log.info("Withdrew session ticket %s for appointment %s", ticket.id, appointment_id)
        return True

    async def follow_reschedule(self, appointment_id: uuid.UUID, start_time: datetime) -> bool:
        ticket = await self.tickets.get_for_appointment(appointment_id)
        if ticket is None:
            return False
        return await self.tickets.move(ticket, start_time)

    async def release_for(self, appointment_id: uuid.UUID) -> SessionTicket | None:
        ticket = await self.tickets.get_for_appointment(appointment_id)
        if ticket is not None:
            await self.tickets.release(ticket)
        return ticket


class AdmissionService:
    """Gatekeeper for live sessions.

    The first admitted invitee activates the ticket: a backend session is
    created and the ticket moves from scheduled to started exactly once, even
    under concurrent first arrivals. Everyone after that joins the recorded
    session. Denials (not invited, too early) are results, not errors.
    """

    def __init__(
        self,
        session: AsyncSession,
        backend: SessionBackendPort | None = None,
        tokens: JoinTokenCodec | None = None,
        locks: KeyedLock | None = None,
        lead: timedelta | None = None,
    ):
        self.session = session
        self.tickets = TicketRepository(session)
        self.appts = AppointmentRepository(session)
        self.outbox = OutboxService(session)
        self.backend = backend or registry.session_backend()
        self.tokens = tokens or JoinTokenCodec()
        self.locks = locks or ticket_locks
        self.lead = lead if lead is not None else timedelta(minutes=settings.ADMISSION_LEAD_MINUTES)

    async def request_admission(self, appointment_id: uuid.UUID, requester_identity: str, now: datetime | None = None) -> AdmissionResult:
        ticket = await retry_read(lambda: self.tickets.get_for_appointment(appointment_id), on_retry=self.session.rollback)
        if ticket is None:
            raise NotScheduled(f"No session is scheduled for appointment {appointment_id}", appointment_id=str(appointment_id))
        if requester_identity not in ticket.invitees:
            log.info("Admission denied for %s on appointment %s: not invited", requester_identity, appointment_id)
            return AdmissionResult.denied(appointment_id, DenialReason.NOT_INVITED)
        return await self._admit(ticket, requester_identity, now, stamp_appointment=True)

    async def redeem(self, token: str, now: datetime | None = None, appointment_id: uuid.UUID | None = None) -> AdmissionResult:
        claims = self.tokens.resolve(token)
        if appointment_id is not None and appointment_id != claims.appointment_id:
            raise NotScheduled("Join token does not belong to this appointment", appointment_id=str(appointment_id))
        ticket = await retry_read(lambda: self.tickets.get_by_token(token), on_retry=self.session.rollback)
        if ticket is None:
            raise NotScheduled("Join token is not on any scheduled session")
        invite = next((i for i in ticket.invites if i.token == token), None)
        if ticket.appointment_id != claims.appointment_id or invite is None or invite.subject_identity != claims.subject_identity:
            raise InvalidToken("Join token does not match its roster entry")
        return await self._admit(ticket, claims.subject_identity, now, stamp_appointment=False)

    async def _admit(self, ticket: SessionTicket, requester: str, now: datetime | None, *, stamp_appointment: bool) -> AdmissionResult:
        now = as_utc(now) if now is not None else utcnow()
        if now < ticket.scheduled_at - self.lead:
            log.info("Admission denied for %s on appointment %s: too early", requester, ticket.appointment_id)
            return AdmissionResult.denied(ticket.appointment_id, DenialReason.TOO_EARLY)
        if ticket.status == TICKET_STARTED:
            return await self._join_started(ticket, requester)
        return await self._activate(ticket, requester, stamp_appointment=stamp_appointment)

    async def _join_started(self, ticket: SessionTicket, requester: str) -> AdmissionResult:
        session_id = ticket.backend_session_id
        descriptor = await retry_read(lambda: bounded(self.backend.get_session(session_id), what="get session"))
        participant = await bounded(self.backend.register_participant(session_id, requester), what="register participant")
        log.info("Admitted %s to running session %s (appointment %s)", requester, session_id, ticket.appointment_id)
        return AdmissionResult.admitted(ticket.appointment_id, descriptor, participant)

    async def _activate(self, ticket: SessionTicket, requester: str, *, stamp_appointment: bool) -> AdmissionResult:
        async with self.locks.hold(f"ticket:{ticket.id}"):
            # another caller may have activated while we waited
            await self.tickets.refresh_state(ticket)
            if ticket.deleted_at is not None:
                raise NotScheduled(f"Session for appointment {ticket.appointment_id} was released")
            if ticket.status == TICKET_STARTED:
                return await self._join_started(ticket, requester)

            created = await bounded(self.backend.create_session(requester), what="create session")
            session_id = created.session.session_id
            try:
                won = await self.tickets.mark_started(ticket.id, session_id)
                if won:
                    if stamp_appointment:
                        await self.appts.stamp_session(ticket.appointment_id, session_id)
                    await self.outbox.enqueue(
                        ticket.org_id, SESSION_STARTED, "appointment", ticket.appointment_id,
                        {"backend_session_id": session_id, "first_participant": requester},
                    )
                await self.session.commit()
            except (StorageError, SQLAlchemyError) as e:
                await self.session.rollback()
                await self._discard(session_id)
                if isinstance(e, StorageError):
                    raise
                raise StorageError("Could not record session activation") from e

            if not won:
                # lost the race to another process; tear down our session and join theirs
                log.info("Ticket %s already activated elsewhere; discarding session %s", ticket.id, session_id)
                await self._discard(session_id)
                await self.tickets.refresh_state(ticket)
                return await self._join_started(ticket, requester)

            log.info("Activated session %s for appointment %s (first: %s)", session_id, ticket.appointment_id, requester)
            return AdmissionResult.admitted(ticket.appointment_id, created.session, created.participant)

    async def _discard(self, session_id: str) -> None:
        try:
            await bounded(self.backend.delete_session(session_id), what="delete session")
        except DomainError as e:
            log.warning("Could not delete orphaned backend session %s: %s", session_id, e)
