import logging
import uuid
from telecare.core.errors import BackendUnavailable
from telecare.platform.ports.session_backend import (
    SessionBackendPort, SessionDescriptor, ParticipantDescriptor, CreatedSession,
)

log = logging.getLogger("session.memory")

class InMemorySessionBackend(SessionBackendPort):
    """Process-local stand-in for the media provider (local dev and tests)."""

    def __init__(self, media_region: str = "local"):
        self.media_region = media_region
        self.sessions: dict[str, SessionDescriptor] = {}
        self.participants: dict[str, dict[str, ParticipantDescriptor]] = {}

    def _participant(self, session_id: str, participant_id: str) -> ParticipantDescriptor:
        return ParticipantDescriptor(
            participant_id=uuid.uuid4().hex,
            external_user_id=participant_id,
            join_token=uuid.uuid4().hex,
            data={"session_id": session_id},
        )

    async def create_session(self, first_participant_id: str) -> CreatedSession:
        session = SessionDescriptor(session_id=uuid.uuid4().hex, media_region=self.media_region)
        self.sessions[session.session_id] = session
        participant = self._participant(session.session_id, first_participant_id)
        self.participants[session.session_id] = {first_participant_id: participant}
        log.info("[MEMORY SESSION] created session=%s first=%s", session.session_id, first_participant_id)
        return CreatedSession(session=session, participant=participant)

    async def get_session(self, session_id: str) -> SessionDescriptor:
        session = self.sessions.get(session_id)
        if session is None:
            raise BackendUnavailable(f"Session {session_id} not found on backend")
        return session

    async def register_participant(self, session_id: str, participant_id: str) -> ParticipantDescriptor:
        if session_id not in self.sessions:
            raise BackendUnavailable(f"Session {session_id} not found on backend")
        roster = self.participants.setdefault(session_id, {})
        existing = roster.get(participant_id)
        if existing is not None:
            return existing
        participant = roster[participant_id] = self._participant(session_id, participant_id)
        return participant

    async def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.participants.pop(session_id, None)
        log.info("[MEMORY SESSION] deleted session=%s", session_id)
