from typing import Any, Protocol, runtime_checkable
from pydantic import BaseModel, Field

class SessionDescriptor(BaseModel):
    session_id: str
    media_region: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

class ParticipantDescriptor(BaseModel):
    participant_id: str
    external_user_id: str
    join_token: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

class CreatedSession(BaseModel):
    session: SessionDescriptor
    participant: ParticipantDescriptor

@runtime_checkable
class SessionBackendPort(Protocol):
    """Opaque real-time media provider. Only ids cross this boundary into storage."""

    async def create_session(self, first_participant_id: str) -> CreatedSession: ...

    async def get_session(self, session_id: str) -> SessionDescriptor: ...

    # idempotent per (session_id, participant_id)
    async def register_participant(self, session_id: str, participant_id: str) -> ParticipantDescriptor: ...

    async def delete_session(self, session_id: str) -> None: ...
