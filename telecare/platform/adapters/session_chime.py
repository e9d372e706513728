import asyncio
import logging
import uuid
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from telecare.core.config import settings
from telecare.core.errors import BackendUnavailable
from telecare.platform.ports.session_backend import (
    SessionBackendPort, SessionDescriptor, ParticipantDescriptor, CreatedSession,
)

log = logging.getLogger("session.chime")

_CAPABILITIES = {"Audio": "SendReceive", "Video": "SendReceive", "Content": "SendReceive"}

def _meeting(m: dict) -> SessionDescriptor:
    return SessionDescriptor(session_id=m["MeetingId"], media_region=m.get("MediaRegion"), data=m)

def _attendee(a: dict) -> ParticipantDescriptor:
    return ParticipantDescriptor(
        participant_id=a["AttendeeId"],
        external_user_id=a["ExternalUserId"],
        join_token=a.get("JoinToken"),
        data=a,
    )

class ChimeSessionBackend(SessionBackendPort):
    """AWS Chime SDK Meetings. boto3 is blocking, so every call runs in a worker thread."""

    def __init__(self, client=None):
        session = boto3.session.Session(region_name=settings.CHIME_REGION)
        self.client = client or session.client(
            "chime-sdk-meetings",
            config=Config(
                connect_timeout=settings.BACKEND_TIMEOUT_SECONDS,
                read_timeout=settings.BACKEND_TIMEOUT_SECONDS,
                retries={"max_attempts": 2, "mode": "standard"},
            ),
        )
        self.region = settings.CHIME_REGION

    async def _call(self, op: str, **kwargs) -> dict:
        try:
            return await asyncio.to_thread(getattr(self.client, op), **kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            log.error("Chime %s failed (%s): %s", op, code, e)
            raise BackendUnavailable(f"Chime {op} failed: {code}", provider_code=code) from e
        except BotoCoreError as e:
            log.error("Chime %s transport failure: %s", op, e)
            raise BackendUnavailable(f"Chime {op} unavailable") from e

    async def create_session(self, first_participant_id: str) -> CreatedSession:
        resp = await self._call(
            "create_meeting_with_attendees",
            ClientRequestToken=uuid.uuid4().hex,
            MediaRegion=self.region,
            ExternalMeetingId=uuid.uuid4().hex,
            MeetingFeatures={
                "Audio": {"EchoReduction": "AVAILABLE"},
                "Video": {"MaxResolution": "HD"},
                "Content": {"MaxResolution": "FHD"},
                "Attendee": {"MaxCount": settings.CHIME_MAX_ATTENDEES},
            },
            Attendees=[{"ExternalUserId": first_participant_id, "Capabilities": _CAPABILITIES}],
        )
        attendees = resp.get("Attendees") or []
        if not attendees:
            errors = resp.get("Errors") or []
            raise BackendUnavailable("Chime created a meeting without its first attendee", errors=errors)
        return CreatedSession(session=_meeting(resp["Meeting"]), participant=_attendee(attendees[0]))

    async def get_session(self, session_id: str) -> SessionDescriptor:
        resp = await self._call("get_meeting", MeetingId=session_id)
        return _meeting(resp["Meeting"])

    async def _find_attendee(self, session_id: str, participant_id: str) -> dict | None:
        kwargs = {"MeetingId": session_id}
        while True:
            resp = await self._call("list_attendees", **kwargs)
            for a in resp.get("Attendees", []):
                if a.get("ExternalUserId") == participant_id:
                    return a
            token = resp.get("NextToken")
            if not token:
                return None
            kwargs["NextToken"] = token

    async def register_participant(self, session_id: str, participant_id: str) -> ParticipantDescriptor:
        existing = await self._find_attendee(session_id, participant_id)
        if existing is not None:
            return _attendee(existing)
        resp = await self._call(
            "create_attendee",
            MeetingId=session_id,
            ExternalUserId=participant_id,
            Capabilities=_CAPABILITIES,
        )
        return _attendee(resp["Attendee"])

    async def delete_session(self, session_id: str) -> None:
        try:
            await self._call("delete_meeting", MeetingId=session_id)
        except BackendUnavailable as e:
            if e.details.get("provider_code") == "NotFoundException":
                log.info("Chime meeting %s already gone", session_id)
                return
            raise
