from dataclasses import dataclass
from string import Template

@dataclass(frozen=True)
class MessageTemplate:
    subject: str
    body: str

BOOKING_CONFIRMATION = "booking-confirmation"
MEETING_INVITATION = "meeting-invitation"
APPOINTMENT_REMINDER = "appointment-reminder"

TEMPLATES: dict[str, MessageTemplate] = {
    BOOKING_CONFIRMATION: MessageTemplate(
        subject="Booking confirmation",
        body=(
            "Hello ${client_name},\n\n"
            "Your appointment with ${provider_name} is booked for ${appointment_date} at ${appointment_time}.\n"
            "Package: ${package_name}\n"
        ),
    ),
    MEETING_INVITATION: MessageTemplate(
        subject="Meeting invitation",
        body=(
            "Hello ${recipient_name},\n\n"
            "You are invited to a video consultation between ${provider_name} and ${client_name} "
            "on ${appointment_date} at ${appointment_time}.\n"
            "Join here (opens 15 minutes before the start): ${meeting_url}\n"
        ),
    ),
    APPOINTMENT_REMINDER: MessageTemplate(
        subject="Booking reminder",
        body=(
            "Hello ${client_name},\n\n"
            "This is a reminder of your appointment with ${provider_name} "
            "on ${appointment_date} at ${appointment_time}.\n"
            "Package: ${package_name}\n"
        ),
    ),
}

def render(kind: str, subject: str | None, variables: dict) -> tuple[str, str]:
    """Render (subject, body). Unknown placeholders are left as-is rather than failing the send."""
    template = TEMPLATES.get(kind)
    if template is None:
        raise KeyError(f"Unknown template kind: {kind}")
    rendered_subject = Template(subject or template.subject).safe_substitute(variables)
    rendered_body = Template(template.body).safe_substitute(variables)
    return rendered_subject, rendered_body
