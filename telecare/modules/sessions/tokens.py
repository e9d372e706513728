"""Signed join credentials.

A token binds exactly one subject to exactly one appointment. It carries no
expiry: it is a durable, replayable capability, and the admission window is
re-checked on every use. A random ``jti`` keeps tokens unique even when the
same subject is invited twice to one appointment.
"""
import uuid
from dataclasses import dataclass
from jose import jwt, JWTError
from telecare.core.config import settings
from telecare.core.errors import InvalidToken

TOKEN_TYPE = "join"

@dataclass(frozen=True)
class JoinClaims:
    subject_identity: str
    appointment_id: uuid.UUID
    role: str | None = None

class JoinTokenCodec:
    def __init__(self, secret: str | None = None, algorithm: str | None = None):
        self.secret = secret or settings.JOIN_TOKEN_SECRET
        self.algorithm = algorithm or settings.JOIN_TOKEN_ALG

    def issue(self, subject_identity: str, appointment_id: uuid.UUID, role: str | None = None) -> str:
        claims = {
            "sub": subject_identity,
            "appointment_id": str(appointment_id),
            "typ": TOKEN_TYPE,
            "jti": uuid.uuid4().hex,
        }
        if role:
            claims["role"] = role
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def resolve(self, token: str) -> JoinClaims:
        try:
            data = jwt.decode(token, self.secret, algorithms=[self.algorithm], options={"verify_aud": False})
        except JWTError as e:
            raise InvalidToken(f"Join token rejected: {e}") from e
        if data.get("typ") != TOKEN_TYPE or not data.get("sub") or not data.get("appointment_id"):
            raise InvalidToken("Join token is missing required claims")
        try:
            appointment_id = uuid.UUID(str(data["appointment_id"]))
        except ValueError as e:
            raise InvalidToken("Join token names a malformed appointment id") from e
        return JoinClaims(subject_identity=str(data["sub"]), appointment_id=appointment_id, role=data.get("role"))
