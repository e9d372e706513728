import uuid
from datetime import datetime
from typing import Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from telecare.core.base import as_utc

class _Instants(BaseModel):
    @field_validator("start_time", "end_time", check_fields=False)
    @classmethod
    def _utc(cls, v: datetime | None):
        return as_utc(v) if v is not None else v

# ---- Appointments ----

class AppointmentCreate(_Instants):
    start_time: datetime
    end_time: datetime
    provider_identity: str
    provider_name: str | None = None
    org_id: str | None = None
    department_id: str | None = None
    client_email: str | None = None
    client_name: str | None = None
    client_phone: str | None = None
    reason: str | None = None
    location: str | None = None
    calling_enabled: bool = False
    send_confirmation: bool = False
    package_info: dict[str, Any] | None = None
    payment_info: dict[str, Any] | None = None

class AppointmentUpdate(_Instants):
    # allow updating a subset of fields
    start_time: datetime | None = None
    end_time: datetime | None = None
    provider_identity: str | None = None
    provider_name: str | None = None
    department_id: str | None = None
    client_email: str | None = None
    client_name: str | None = None
    client_phone: str | None = None
    reason: str | None = None
    location: str | None = None
    status: str | None = None
    calling_enabled: bool | None = None
    package_info: dict[str, Any] | None = None
    payment_info: dict[str, Any] | None = None

class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: str
    department_id: str | None = None
    provider_identity: str
    provider_name: str | None = None
    start_time: datetime
    end_time: datetime
    client_email: str | None = None
    client_name: str | None = None
    client_phone: str | None = None
    client_mrn: str | None = None
    client_record_id: uuid.UUID | None = None
    status: str
    calling_enabled: bool
    reminder_sent: bool
    backend_session_id: str | None = None
    reason: str | None = None
    location: str | None = None
    package_info: dict[str, Any] | None = None
    payment_info: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime

class BookingOut(BaseModel):
    appointment: AppointmentOut
    warnings: list[str] = Field(default_factory=list)

class CancelOut(BaseModel):
    appointment_id: uuid.UUID
    deleted: bool = True
    warnings: list[str] = Field(default_factory=list)

class ConflictOut(BaseModel):
    has_conflict: bool
    conflicting_ids: list[uuid.UUID] = Field(default_factory=list)
