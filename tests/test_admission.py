"""Session admission: time gate, roster check, exactly-once activation, token redemption."""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from telecare.core.errors import InvalidToken, NotScheduled
from telecare.core.locks import KeyedLock
from telecare.modules.appointments.models import Appointment
from telecare.modules.events.models import EventOutbox
from telecare.modules.sessions.repository import TicketRepository
from telecare.modules.sessions.schemas import DenialReason
from telecare.modules.sessions.service import AdmissionService
from telecare.modules.sessions.tokens import JoinTokenCodec

from conftest import PROVIDER, CLIENT, at

START = at(10)


@pytest.fixture
async def scheduled(appointments, provider, booking):
    """A calling-enabled appointment at 10:00 and its ticket."""
    out = await appointments.book(provider, booking(START, at(10, 30), calling_enabled=True))
    ticket = await TicketRepository(appointments.session).get_for_appointment(out.appointment.id)
    return out.appointment.id, ticket


async def _admit(db, backend, appointment_id, who, now, locks=None):
    async with db.session() as s:
        return await AdmissionService(s, backend=backend, locks=locks).request_admission(appointment_id, who, now=now)


class TestAdmissionWindow:
    @pytest.mark.asyncio
    async def test_sixteen_minutes_early_is_denied(self, db, backend, scheduled):
        appt_id, _ = scheduled
        result = await _admit(db, backend, appt_id, PROVIDER, START - timedelta(minutes=16))
        assert not result.granted
        assert result.reason == DenialReason.TOO_EARLY
        assert backend.created == 0

    @pytest.mark.asyncio
    async def test_window_opens_exactly_fifteen_minutes_before(self, db, backend, scheduled):
        appt_id, _ = scheduled
        result = await _admit(db, backend, appt_id, PROVIDER, START - timedelta(minutes=15))
        assert result.granted
        assert result.session is not None

    @pytest.mark.asyncio
    async def test_late_joiner_is_admitted(self, db, backend, scheduled):
        appt_id, _ = scheduled
        result = await _admit(db, backend, appt_id, CLIENT, START + timedelta(hours=3))
        assert result.granted

    @pytest.mark.asyncio
    async def test_early_denial_leaves_ticket_untouched(self, db, backend, session, scheduled):
        appt_id, _ = scheduled
        await _admit(db, backend, appt_id, PROVIDER, START - timedelta(hours=1))
        ticket = await TicketRepository(session).get_for_appointment(appt_id)
        assert ticket.status == "scheduled"
        assert ticket.backend_session_id is None


class TestRoster:
    @pytest.mark.asyncio
    async def test_stranger_is_not_invited(self, db, backend, scheduled):
        appt_id, _ = scheduled
        result = await _admit(db, backend, appt_id, "intruder@example.test", START)
        assert not result.granted
        assert result.reason == DenialReason.NOT_INVITED
        assert backend.created == 0

    @pytest.mark.asyncio
    async def test_appointment_without_ticket_is_not_scheduled(self, db, backend, appointments, provider, booking):
        out = await appointments.book(provider, booking(at(12), at(12, 30)))
        with pytest.raises(NotScheduled):
            await _admit(db, backend, out.appointment.id, PROVIDER, at(12))

    @pytest.mark.asyncio
    async def test_unknown_appointment_is_not_scheduled(self, db, backend):
        with pytest.raises(NotScheduled):
            await _admit(db, backend, uuid.uuid4(), PROVIDER, START)


class TestActivation:
    @pytest.mark.asyncio
    async def test_first_admission_activates_and_stamps_appointment(self, db, backend, session, scheduled):
        appt_id, _ = scheduled
        result = await _admit(db, backend, appt_id, PROVIDER, START)

        ticket = await TicketRepository(session).get_for_appointment(appt_id)
        appt = (await session.execute(select(Appointment).where(Appointment.id == appt_id).execution_options(populate_existing=True))).scalar_one()
        assert ticket.status == "started"
        assert ticket.backend_session_id == result.session.session_id
        assert ticket.started_at is not None
        assert appt.backend_session_id == result.session.session_id
        assert appt.calling_enabled
        events = (await session.execute(select(EventOutbox.event_type))).scalars().all()
        assert "SESSION_STARTED" in events

    @pytest.mark.asyncio
    async def test_second_invitee_joins_the_same_session(self, db, backend, scheduled):
        appt_id, _ = scheduled
        first = await _admit(db, backend, appt_id, PROVIDER, START)
        second = await _admit(db, backend, appt_id, CLIENT, START)
        assert backend.created == 1
        assert second.session.session_id == first.session.session_id
        assert second.participant.external_user_id == CLIENT

    @pytest.mark.asyncio
    async def test_rejoin_returns_existing_registration(self, db, backend, scheduled):
        appt_id, _ = scheduled
        await _admit(db, backend, appt_id, PROVIDER, START)
        first = await _admit(db, backend, appt_id, CLIENT, START)
        again = await _admit(db, backend, appt_id, CLIENT, START + timedelta(minutes=5))
        assert again.participant.participant_id == first.participant.participant_id

    @pytest.mark.asyncio
    async def test_concurrent_first_arrivals_create_one_session(self, db, backend, scheduled):
        appt_id, _ = scheduled
        results = await asyncio.gather(
            _admit(db, backend, appt_id, PROVIDER, START),
            _admit(db, backend, appt_id, CLIENT, START),
        )
        assert backend.created == 1
        assert all(r.granted for r in results)
        assert len({r.session.session_id for r in results}) == 1

    @pytest.mark.asyncio
    async def test_losing_a_cross_process_race_discards_extra_session(self, db, backend, scheduled):
        """Separate lock registries stand in for separate worker processes."""
        appt_id, _ = scheduled
        results = await asyncio.gather(
            _admit(db, backend, appt_id, PROVIDER, START, locks=KeyedLock()),
            _admit(db, backend, appt_id, CLIENT, START, locks=KeyedLock()),
        )
        winner = {r.session.session_id for r in results}
        assert len(winner) == 1
        assert backend.created == 2
        assert len(backend.deleted) == 1
        assert backend.deleted[0] not in winner
        assert set(backend.sessions) == winner


class TestRedeem:
    @pytest.mark.asyncio
    async def test_token_admits_its_subject(self, db, backend, scheduled):
        appt_id, ticket = scheduled
        async with db.session() as s:
            result = await AdmissionService(s, backend=backend).redeem(ticket.token_for("client"), now=START)
        assert result.granted
        assert result.appointment_id == appt_id
        assert result.participant.external_user_id == CLIENT

    @pytest.mark.asyncio
    async def test_token_path_does_not_stamp_appointment(self, db, backend, session, scheduled):
        appt_id, ticket = scheduled
        async with db.session() as s:
            await AdmissionService(s, backend=backend).redeem(ticket.token_for("provider"), now=START)
        appt = (await session.execute(select(Appointment).where(Appointment.id == appt_id).execution_options(populate_existing=True))).scalar_one()
        assert appt.backend_session_id is None

    @pytest.mark.asyncio
    async def test_token_respects_admission_window(self, db, backend, scheduled):
        _, ticket = scheduled
        async with db.session() as s:
            result = await AdmissionService(s, backend=backend).redeem(ticket.token_for("client"), now=START - timedelta(minutes=30))
        assert result.reason == DenialReason.TOO_EARLY

    @pytest.mark.asyncio
    async def test_token_for_one_appointment_never_opens_another(self, db, backend, appointments, provider, booking, scheduled):
        _, ticket = scheduled
        other = await appointments.book(provider, booking(at(14), at(14, 30), calling_enabled=True))
        async with db.session() as s:
            with pytest.raises(NotScheduled):
                await AdmissionService(s, backend=backend).redeem(ticket.token_for("client"), now=at(14), appointment_id=other.appointment.id)
        assert backend.created == 0

    @pytest.mark.asyncio
    async def test_validly_signed_token_not_on_roster(self, db, backend, scheduled):
        appt_id, _ = scheduled
        stray = JoinTokenCodec().issue(CLIENT, appt_id)
        async with db.session() as s:
            with pytest.raises(NotScheduled):
                await AdmissionService(s, backend=backend).redeem(stray, now=START)

    @pytest.mark.asyncio
    async def test_forged_token_is_rejected(self, db, backend, scheduled):
        appt_id, _ = scheduled
        forged = JoinTokenCodec(secret="not-the-real-secret").issue(CLIENT, appt_id)
        async with db.session() as s:
            with pytest.raises(InvalidToken):
                await AdmissionService(s, backend=backend).redeem(forged, now=START)
