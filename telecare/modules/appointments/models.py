import uuid
from datetime import datetime
from typing import Any
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, JSON, Boolean, Index, CheckConstraint
from telecare.core.base import Base, TimestampedTenantMixin, UTCDateTime

class Appointment(Base, TimestampedTenantMixin):
    __tablename__ = "appointment"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appointment_window"),
        Index("ix_appointment_provider_window", "provider_identity", "start_time", "end_time"),
        Index("ix_appointment_department_window", "department_id", "start_time", "end_time"),
        Index("ix_appointment_org_start", "org_id", "start_time"),
        Index("ix_appointment_reminder", "status", "reminder_sent", "start_time"),
    )

    # Scope
    department_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    provider_identity: Mapped[str] = mapped_column(String(320))
    provider_name: Mapped[str | None] = mapped_column(String(160), nullable=True)

    # Window
    start_time: Mapped[datetime] = mapped_column(UTCDateTime())
    end_time: Mapped[datetime] = mapped_column(UTCDateTime())

    # Client party
    client_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    client_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    client_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    client_record_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("client_record.id"), nullable=True)
    client_mrn: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Flags
    status: Mapped[str] = mapped_column(String(24), default="booked")
    calling_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    backend_session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Descriptive
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(120), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Open-ended blobs only; everything the core reads is a column above
    package_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payment_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
