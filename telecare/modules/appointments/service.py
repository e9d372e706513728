import logging
import uuid
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.config import settings
from telecare.core.errors import DomainError, NotFound, SlotConflict, StorageError
from telecare.core.locks import scope_lock
from telecare.core.paging import PageParams
from telecare.core.retry import retry_read
from telecare.core.security import Principal
from telecare.modules.appointments.access import WriteTarget, authorize_write, read_scope, can_read, apply_actor_defaults
from telecare.modules.appointments.conflicts import ConflictChecker, ConflictScope
from telecare.modules.appointments.models import Appointment
from telecare.modules.appointments.repository import AppointmentRepository, check_window
from telecare.modules.appointments.schemas import (
    AppointmentCreate, AppointmentUpdate, AppointmentOut, BookingOut, CancelOut, ConflictOut,
)
from telecare.modules.clients.service import ClientRecordService
from telecare.modules.events.outbox import OutboxService, APPT_BOOKED, APPT_RESCHEDULED, APPT_CANCELLED
from telecare.modules.notifications.service import NotificationsService
from telecare.modules.notifications.templates import BOOKING_CONFIRMATION, MEETING_INVITATION
from telecare.modules.sessions.models import SessionInvite
from telecare.modules.sessions.service import TicketService, ROLE_PROVIDER
from telecare.modules.sessions.tokens import JoinTokenCodec
from telecare.platform.ports.notifier import NotifierPort
from telecare.platform.ports.session_backend import SessionBackendPort
from telecare.platform.provider_registry import registry
from telecare.platform.timeouts import bounded

logger = logging.getLogger(__name__)

# fields whose change requires a fresh conflict check
_PLACEMENT_FIELDS = ("start_time", "end_time", "provider_identity")
# a null in the patch means "leave unchanged" for these
_REQUIRED_FIELDS = _PLACEMENT_FIELDS + ("status", "calling_enabled")
# fields mirrored on the session roster
_PARTY_FIELDS = ("provider_identity", "client_email")

def join_url(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/join-meeting?token={token}"

def message_variables(appt: Appointment) -> dict:
    package = appt.package_info or {}
    return {
        "client_name": appt.client_name or appt.client_email,
        "provider_name": appt.provider_name or appt.provider_identity,
        "appointment_date": appt.start_time.strftime("%Y-%m-%d"),
        "appointment_time": appt.start_time.strftime("%H:%M UTC"),
        "package_name": package.get("name"),
    }

class AppointmentService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        notifier: NotifierPort | None = None,
        session_backend: SessionBackendPort | None = None,
        tokens: JoinTokenCodec | None = None,
    ):
        self.session = session
        self.appts = AppointmentRepository(session)
        self.checker = ConflictChecker(session)
        self.clients = ClientRecordService(session)
        self.tickets = TicketService(session, tokens=tokens)
        self.outbox = OutboxService(session)
        self.notifications = NotificationsService(session, notifier=notifier)
        self._backend = session_backend

    @property
    def backend(self) -> SessionBackendPort:
        if self._backend is None:
            self._backend = registry.session_backend()
        return self._backend

    # ---- Reads ----

    async def get(self, actor: Principal, appt_id: uuid.UUID) -> Appointment:
        appt = await retry_read(lambda: self.appts.get(appt_id), on_retry=self.session.rollback)
        if appt is None or not can_read(actor, appt):
            raise NotFound(f"Appointment {appt_id} not found", appointment_id=str(appt_id))
        return appt

    async def search(self, actor: Principal, page: PageParams, *, start: datetime | None = None, end: datetime | None = None, client_mrn: str | None = None) -> list[Appointment]:
        if start is not None and end is not None:
            check_window(start, end)
        rows = await retry_read(
            lambda: self.appts.search(read_scope(actor), start=start, end=end, client_mrn=client_mrn, limit=page.clamped_limit(), offset=page.skip),
            on_retry=self.session.rollback,
        )
        return list(rows)

    async def check_conflict(self, start: datetime, end: datetime, *, provider_identity: str | None = None, department_id: str | None = None, exclude_id: uuid.UUID | None = None) -> ConflictOut:
        check_window(start, end)
        scope = ConflictScope(provider_identity=provider_identity, department_id=department_id)
        found = await retry_read(lambda: self.checker.find_conflicts(start, end, scope, exclude_id=exclude_id), on_retry=self.session.rollback)
        return ConflictOut(has_conflict=bool(found), conflicting_ids=[a.id for a in found])

    # ---- Writes ----

    async def book(self, actor: Principal, payload: AppointmentCreate) -> BookingOut:
        data = apply_actor_defaults(actor, payload.model_dump(exclude={"send_confirmation"}))
        check_window(data["start_time"], data["end_time"])
        authorize_write(actor, WriteTarget(data["provider_identity"], data["org_id"], data.get("department_id")))
        org_id = data.pop("org_id")

        scope = ConflictScope(provider_identity=data["provider_identity"])
        try:
            async with scope_lock(self.session, scope.lock_keys()):
                await self._ensure_free(data["start_time"], data["end_time"], scope)
                record = await self.clients.resolve(org_id, email=data.get("client_email"), full_name=data.get("client_name"), phone=data.get("client_phone"))
                if record is not None:
                    data["client_record_id"] = record.id
                    data["client_mrn"] = record.mrn
                appt = await self.appts.create(org_id, created_by=actor.identity, **data)
                ticket = await self.tickets.open_for(appt) if appt.calling_enabled else None
                await self.outbox.enqueue(org_id, APPT_BOOKED, "appointment", appt.id, {
                    "provider_identity": appt.provider_identity,
                    "start_time": appt.start_time.isoformat(),
                    "end_time": appt.end_time.isoformat(),
                    "calling_enabled": appt.calling_enabled,
                })
                await self._commit()
        except Exception:
            await self.session.rollback()
            raise
        logger.info(f"Booked appointment {appt.id} for {appt.provider_identity} at {appt.start_time.isoformat()}")

        # delivery happens after the booking is durable; failures only produce warnings
        out = AppointmentOut.model_validate(appt)
        warnings = await self._deliver(appt, list(ticket.invites) if ticket else [], confirm=payload.send_confirmation)
        return BookingOut(appointment=out, warnings=warnings)

    async def update(self, actor: Principal, appt_id: uuid.UUID, payload: AppointmentUpdate) -> BookingOut:
        patch = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k not in _REQUIRED_FIELDS}
        appt = await self.appts.get(appt_id)
        if appt is None:
            raise NotFound(f"Appointment {appt_id} not found", appointment_id=str(appt_id))
        authorize_write(actor, WriteTarget.of(appt))

        start = patch.get("start_time") or appt.start_time
        end = patch.get("end_time") or appt.end_time
        provider = patch.get("provider_identity") or appt.provider_identity
        department = patch["department_id"] if "department_id" in patch else appt.department_id
        authorize_write(actor, WriteTarget(provider, appt.org_id, department))
        check_window(start, end)

        placement_changed = any(f in patch and patch[f] != getattr(appt, f) for f in _PLACEMENT_FIELDS)
        window_changed = start != appt.start_time or end != appt.end_time
        attach = patch.get("calling_enabled") is True and not appt.calling_enabled
        detach = patch.get("calling_enabled") is False and appt.calling_enabled
        parties_changed = any(f in patch and patch[f] != getattr(appt, f) for f in _PARTY_FIELDS)
        scope = ConflictScope(provider_identity=provider)
        invites: list[SessionInvite] = []
        try:
            async with scope_lock(self.session, scope.lock_keys() if placement_changed else []):
                if placement_changed:
                    await self._ensure_free(start, end, scope, exclude_id=appt.id)
                if "client_email" in patch and patch["client_email"] != appt.client_email:
                    record = await self.clients.resolve(appt.org_id, email=patch["client_email"], full_name=patch.get("client_name") or appt.client_name, phone=patch.get("client_phone") or appt.client_phone)
                    appt.client_record_id = record.id if record else None
                    appt.client_mrn = record.mrn if record else None
                for field, value in patch.items():
                    setattr(appt, field, value)
                appt.version = (appt.version or 1) + 1
                await self._flush()

                if detach:
                    await self.tickets.withdraw(appt.id)
                elif parties_changed and not attach:
                    invites = await self.tickets.sync_parties(appt)
                if window_changed:
                    moved = await self.tickets.follow_reschedule(appt.id, appt.start_time)
                    await self.outbox.enqueue(appt.org_id, APPT_RESCHEDULED, "appointment", appt.id, {
                        "start_time": appt.start_time.isoformat(),
                        "end_time": appt.end_time.isoformat(),
                        "ticket_moved": moved,
                    })
                if attach:
                    invites = list((await self.tickets.open_for(appt)).invites)
                await self._commit()
        except Exception:
            await self.session.rollback()
            raise
        logger.info(f"Updated appointment {appt.id} fields={sorted(patch)}")

        out = AppointmentOut.model_validate(appt)
        warnings = await self._deliver(appt, invites)
        return BookingOut(appointment=out, warnings=warnings)

    async def cancel(self, actor: Principal, appt_id: uuid.UUID) -> CancelOut:
        appt = await self.appts.get(appt_id)
        if appt is None:
            raise NotFound(f"Appointment {appt_id} not found", appointment_id=str(appt_id))
        authorize_write(actor, WriteTarget.of(appt))
        try:
            ticket = await self.tickets.release_for(appt.id)
            await self.appts.soft_delete(appt)
            await self.outbox.enqueue(appt.org_id, APPT_CANCELLED, "appointment", appt.id, {
                "backend_session_id": ticket.backend_session_id if ticket else None,
            })
            await self._commit()
        except Exception:
            await self.session.rollback()
            raise
        logger.info(f"Cancelled appointment {appt.id}")

        warnings: list[str] = []
        session_id = ticket.backend_session_id if ticket else None
        if session_id:
            try:
                await bounded(self.backend.delete_session(session_id), what="delete session")
            except DomainError as e:
                logger.warning(f"Teardown of session {session_id} for cancelled appointment {appt.id} failed: {e.message}")
                warnings.append(f"Session teardown failed: {e.message}")
        return CancelOut(appointment_id=appt.id, warnings=warnings)

    # ---- Internals ----

    async def _ensure_free(self, start: datetime, end: datetime, scope: ConflictScope, exclude_id: uuid.UUID | None = None) -> None:
        found = await self.checker.find_conflicts(start, end, scope, exclude_id=exclude_id)
        if found:
            ids = [str(a.id) for a in found]
            logger.info(f"Slot conflict for {scope} in [{start.isoformat()}, {end.isoformat()}): {ids}")
            raise SlotConflict(conflicting_ids=ids)

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise StorageError("Flush failed") from e

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            raise StorageError("Commit failed") from e

    async def _send_invitations(self, appt: Appointment, invites: list[SessionInvite]) -> list[str]:
        warnings = []
        base = message_variables(appt)
        for invite in invites:
            recipient_name = base["provider_name"] if invite.role == ROLE_PROVIDER else base["client_name"]
            msg = await self.notifications.send(
                appt.org_id,
                template_kind=MEETING_INVITATION,
                recipient=invite.subject_identity,
                subject=None,
                variables={**base, "recipient_name": recipient_name, "meeting_url": join_url(invite.token)},
            )
            if msg.status != "sent":
                warnings.append(f"Invitation to {invite.subject_identity} was not delivered: {msg.error}")
        return warnings

    async def _send_confirmation(self, appt: Appointment) -> list[str]:
        if not appt.client_email:
            return ["Booking confirmation skipped: no client contact"]
        msg = await self.notifications.send(appt.org_id, template_kind=BOOKING_CONFIRMATION, recipient=appt.client_email, subject=None, variables=message_variables(appt))
        if msg.status != "sent":
            return [f"Booking confirmation to {appt.client_email} was not delivered: {msg.error}"]
        return []

    async def _deliver(self, appt: Appointment, invites: list[SessionInvite], *, confirm: bool = False) -> list[str]:
        if not invites and not confirm:
            return []
        warnings = []
        try:
            if invites:
                warnings += await self._send_invitations(appt, invites)
            if confirm:
                warnings += await self._send_confirmation(appt)
            await self._commit()
        except StorageError as e:
            await self.session.rollback()
            logger.error(f"Could not record outbound messages for appointment {appt.id}: {e.message}")
            warnings.append("Outbound message log could not be saved")
        return warnings
