# Importing this module registers every table on Base.metadata.
from telecare.modules.clients.models import ClientRecord  # noqa: F401
from telecare.modules.appointments.models import Appointment  # noqa: F401
from telecare.modules.sessions.models import SessionTicket, SessionInvite  # noqa: F401
from telecare.modules.notifications.models import OutboundMessage  # noqa: F401
from telecare.modules.events.models import EventOutbox  # noqa: F401
