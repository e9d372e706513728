import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, UniqueConstraint
from telecare.core.base import Base, TimestampedTenantMixin, UTCDateTime

TICKET_SCHEDULED = "scheduled"
TICKET_STARTED = "started"

class SessionTicket(Base, TimestampedTenantMixin):
    """Admission-control record, 1:1 with an Appointment that has calling enabled."""
    __tablename__ = "session_ticket"

    appointment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("appointment.id"), unique=True)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime())
    status: Mapped[str] = mapped_column(String(16), default=TICKET_SCHEDULED)  # scheduled | started
    # set once, on first activation
    backend_session_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    invites: Mapped[list["SessionInvite"]] = relationship(
        back_populates="ticket", lazy="selectin", cascade="all, delete-orphan", order_by="SessionInvite.role"
    )

    @property
    def invitees(self) -> list[str]:
        return [i.subject_identity for i in self.invites]

    def token_for(self, role: str) -> str | None:
        for invite in self.invites:
            if invite.role == role:
                return invite.token
        return None

class SessionInvite(Base, TimestampedTenantMixin):
    """One invitee on a ticket's roster and the join token issued to them."""
    __tablename__ = "session_invite"
    __table_args__ = (UniqueConstraint("ticket_id", "role", name="uq_session_invite_role"),)

    ticket_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("session_ticket.id"), index=True)
    role: Mapped[str] = mapped_column(String(24))  # provider | client
    subject_identity: Mapped[str] = mapped_column(String(320))
    token: Mapped[str] = mapped_column(String(1024), unique=True)

    ticket: Mapped[SessionTicket] = relationship(back_populates="invites")
