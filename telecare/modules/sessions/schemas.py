import uuid
from enum import Enum
from pydantic import BaseModel
from telecare.platform.ports.session_backend import SessionDescriptor, ParticipantDescriptor

class DenialReason(str, Enum):
    NOT_INVITED = "not invited"
    TOO_EARLY = "too early"

class AdmissionResult(BaseModel):
    appointment_id: uuid.UUID
    granted: bool
    reason: DenialReason | None = None
    session: SessionDescriptor | None = None
    participant: ParticipantDescriptor | None = None

    @classmethod
    def denied(cls, appointment_id: uuid.UUID, reason: DenialReason) -> "AdmissionResult":
        return cls(appointment_id=appointment_id, granted=False, reason=reason)

    @classmethod
    def admitted(cls, appointment_id: uuid.UUID, session: SessionDescriptor, participant: ParticipantDescriptor) -> "AdmissionResult":
        return cls(appointment_id=appointment_id, granted=True, session=session, participant=participant)

class JoinRequest(BaseModel):
    token: str
    appointment_id: uuid.UUID | None = None
