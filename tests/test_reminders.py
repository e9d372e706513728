"""Reminder sweep: window selection, confirmed-send flagging, failure isolation."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from telecare.modules.appointments.models import Appointment
from telecare.modules.appointments.repository import AppointmentRepository
from telecare.modules.events.models import EventOutbox
from telecare.modules.notifications.templates import APPOINTMENT_REMINDER
from telecare.modules.reminders.service import ReminderScanner, SENT, FAILED, SKIPPED

from conftest import CLIENT, OTHER_PROVIDER, RecordingNotifier, at

NOW = at(9)


async def _book(appointments, actor, booking, start, **overrides):
    out = await appointments.book(actor, booking(start, start + timedelta(minutes=30), **overrides))
    return out.appointment.id


def _ids(candidates):
    return [c.appointment_id for c in candidates]


class TestReminderScan:
    @pytest.mark.asyncio
    async def test_sent_reminder_is_not_repeated(self, session, appointments, provider, booking):
        appt_id = await _book(appointments, provider, booking, NOW + timedelta(minutes=20))
        notifier = RecordingNotifier()
        scanner = ReminderScanner(session, notifier=notifier)

        first = await scanner.scan(NOW)
        assert _ids(first) == [appt_id]
        assert first[0].outcome == SENT
        assert [e.template_kind for e in notifier.to(CLIENT)] == [APPOINTMENT_REMINDER]

        assert await scanner.scan(NOW) == []
        appt = await AppointmentRepository(session).get(appt_id)
        assert appt.reminder_sent

    @pytest.mark.asyncio
    async def test_failed_send_is_retried_next_sweep(self, session, appointments, provider, booking):
        appt_id = await _book(appointments, provider, booking, NOW + timedelta(minutes=20))
        scanner = ReminderScanner(session, notifier=RecordingNotifier(fail_for=(CLIENT,)))

        first = await scanner.scan(NOW)
        assert first[0].outcome == FAILED
        second = await scanner.scan(NOW)
        assert _ids(second) == [appt_id]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, session, appointments, admin, booking):
        failing = await _book(appointments, admin, booking, NOW + timedelta(minutes=5), client_email="bounce@example.test")
        fine = await _book(appointments, admin, booking, NOW + timedelta(minutes=25, seconds=59), provider_identity=OTHER_PROVIDER)
        scanner = ReminderScanner(session, notifier=RecordingNotifier(fail_for=("bounce@example.test",)))

        outcomes = {c.appointment_id: c.outcome for c in await scanner.scan(NOW)}
        assert outcomes == {failing: FAILED, fine: SENT}

    @pytest.mark.asyncio
    async def test_only_upcoming_window_is_selected(self, session, appointments, provider, booking):
        at_now = await _book(appointments, provider, booking, NOW)
        await _book(appointments, provider, booking, NOW + timedelta(minutes=30) + timedelta(minutes=45))
        scanner = ReminderScanner(session, notifier=RecordingNotifier())
        assert _ids(await scanner.scan(NOW)) == [at_now]

    @pytest.mark.asyncio
    async def test_window_end_is_excluded(self, session, appointments, provider, booking):
        await _book(appointments, provider, booking, NOW + timedelta(minutes=30))
        assert await ReminderScanner(session, notifier=RecordingNotifier()).scan(NOW) == []

    @pytest.mark.asyncio
    async def test_started_in_the_past_is_excluded(self, session, appointments, provider, booking):
        await _book(appointments, provider, booking, NOW - timedelta(minutes=1))
        assert await ReminderScanner(session, notifier=RecordingNotifier()).scan(NOW) == []

    @pytest.mark.asyncio
    async def test_only_booked_status_is_reminded(self, session, appointments, provider, booking):
        appt_id = await _book(appointments, provider, booking, NOW + timedelta(minutes=10))
        appt = await AppointmentRepository(session).get(appt_id)
        appt.status = "completed"
        await session.commit()
        assert await ReminderScanner(session, notifier=RecordingNotifier()).scan(NOW) == []

    @pytest.mark.asyncio
    async def test_cancelled_appointments_are_excluded(self, session, appointments, provider, booking):
        appt_id = await _book(appointments, provider, booking, NOW + timedelta(minutes=10))
        await appointments.cancel(provider, appt_id)
        assert await ReminderScanner(session, notifier=RecordingNotifier()).scan(NOW) == []

    @pytest.mark.asyncio
    async def test_missing_contact_is_skipped(self, session, appointments, provider, booking):
        appt_id = await _book(appointments, provider, booking, NOW + timedelta(minutes=10), client_email=None)
        notifier = RecordingNotifier()
        results = await ReminderScanner(session, notifier=notifier).scan(NOW)
        assert [(c.appointment_id, c.outcome) for c in results] == [(appt_id, SKIPPED)]
        assert notifier.sent == []
        appt = await AppointmentRepository(session).get(appt_id)
        assert not appt.reminder_sent

    @pytest.mark.asyncio
    async def test_confirmed_send_records_event(self, session, appointments, provider, booking):
        appt_id = await _book(appointments, provider, booking, NOW + timedelta(minutes=10))
        await ReminderScanner(session, notifier=RecordingNotifier()).scan(NOW)
        rows = (await session.execute(select(EventOutbox).where(EventOutbox.event_type == "REMINDER_SENT"))).scalars().all()
        assert [r.subject_id for r in rows] == [str(appt_id)]
