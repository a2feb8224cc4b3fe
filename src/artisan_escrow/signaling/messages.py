"""Wire messages of the call signaling channel.

Every message travels as the payload of a ``call_signal`` broadcast and is
validated here before the session dispatches on its ``type`` tag. Field
names on the wire keep the camelCase used by browser peers (``senderName``,
``sdpMid``), hence the aliases.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

CALL_EVENT = "call_signal"
DEFAULT_CALLER_NAME = "Someone"


class SessionDescription(BaseModel):
    """An SDP offer or answer."""

    model_config = ConfigDict(frozen=True)

    type: Literal["offer", "answer", "pranswer", "rollback"]
    sdp: str = ""


class IceCandidate(BaseModel):
    """A network path descriptor, as produced by ``RTCIceCandidate.toJSON()``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    candidate: str
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_m_line_index: int | None = Field(default=None, alias="sdpMLineIndex")
    username_fragment: str | None = Field(default=None, alias="usernameFragment")


class _Signal(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: str = Field(alias="from", min_length=1)

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the wire (aliases, no nulls)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OfferSignal(_Signal):
    type: Literal["offer"] = "offer"
    to: str
    sender_name: str | None = Field(default=None, alias="senderName")
    sdp: SessionDescription
    video: bool = False

    @property
    def display_name(self) -> str:
        return self.sender_name or DEFAULT_CALLER_NAME


class AnswerSignal(_Signal):
    type: Literal["answer"] = "answer"
    to: str
    sdp: SessionDescription


class IceSignal(_Signal):
    type: Literal["ice"] = "ice"
    to: str
    candidate: IceCandidate | None = None


class HangupSignal(_Signal):
    """Broadcast termination; ``to`` is optional."""

    type: Literal["hangup"] = "hangup"
    to: str | None = None


class RejectSignal(_Signal):
    type: Literal["reject"] = "reject"
    to: str


CallSignal = Annotated[
    OfferSignal | AnswerSignal | IceSignal | HangupSignal | RejectSignal,
    Field(discriminator="type"),
]

_signal_adapter: TypeAdapter[CallSignal] = TypeAdapter(CallSignal)


def parse_signal(raw: object) -> CallSignal | None:
    """Validate a raw channel message.

    Accepts the signal itself, a ``{"payload": signal}`` envelope, or a JSON
    string of either. Returns None for anything malformed.
    """
    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if isinstance(raw, dict) and isinstance(raw.get("payload"), dict):
        raw = raw["payload"]
    try:
        return _signal_adapter.validate_python(raw)
    except PydanticValidationError:
        return None
