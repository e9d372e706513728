from typing import Any, Protocol, runtime_checkable
from pydantic import BaseModel, Field

class OutboundEnvelope(BaseModel):
    template_kind: str
    recipient: str
    sender: str
    subject: str
    body: str
    variables: dict[str, Any] = Field(default_factory=dict)

@runtime_checkable
class NotifierPort(Protocol):
    # returns only on confirmed hand-off; raises NotificationError otherwise
    async def send(self, envelope: OutboundEnvelope) -> None: ...
