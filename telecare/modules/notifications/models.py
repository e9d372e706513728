from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, JSON
from telecare.core.base import Base, TimestampedTenantMixin

class OutboundMessage(Base, TimestampedTenantMixin):
    __tablename__ = "outbound_message"

    template_kind: Mapped[str] = mapped_column(String(48))
    to: Mapped[str] = mapped_column(String(320))
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    body: Mapped[str] = mapped_column(Text)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="queued")  # queued | sent | failed
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
