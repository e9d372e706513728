"""Buffered interval-overlap rules for appointment windows.

Only the candidate window is widened by the buffer; stored windows are compared
as-is. A stored window ``[s, e)`` conflicts with the buffered candidate
``[bs, be)`` when any of these hold:

1. it starts inside the buffered window:  ``bs <= s < be``
2. it ends inside the buffered window:    ``bs < e <= be``
3. it contains the buffered window:       ``s <= bs and e >= be``

The same three clauses, with a zero buffer, back the time-range filter of the
appointment list. A range with only one bound is open on the other side.
"""
from datetime import datetime, timedelta
from sqlalchemy import and_, or_
from telecare.core.config import settings
from telecare.modules.appointments.models import Appointment

def default_buffer() -> timedelta:
    return timedelta(minutes=settings.CONFLICT_BUFFER_MINUTES)

def buffered(start: datetime, end: datetime, buffer: timedelta) -> tuple[datetime, datetime]:
    return start - buffer, end + buffer

def windows_overlap(stored_start: datetime, stored_end: datetime, start: datetime, end: datetime, buffer: timedelta = timedelta(0)) -> bool:
    bs, be = buffered(start, end, buffer)
    return (
        (bs <= stored_start < be)
        or (bs < stored_end <= be)
        or (stored_start <= bs and stored_end >= be)
    )

def overlap_clause(start: datetime, end: datetime):
    """SQL form of ``windows_overlap`` for an already-buffered range."""
    return or_(
        and_(Appointment.start_time >= start, Appointment.start_time < end),
        and_(Appointment.end_time > start, Appointment.end_time <= end),
        and_(Appointment.start_time <= start, Appointment.end_time >= end),
    )
