"""
Message channel between editors and the authority.

Wire format (JSON objects):
    {"type": "update", "data": <partial state>, "senderId": "<client id>"}
    {"type": "updateData" | "overrideData", "payload": <partial/full state>}

Non-authority clients never write the store; they send update messages and
the authority applies them in arrival order.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import RebellionError

if TYPE_CHECKING:
    from .service import StateService

logger = logging.getLogger(__name__)


class MessageError(RebellionError):
    """A channel message could not be parsed."""
    pass


class UpdateMessage(BaseModel):
    """Partial update submitted by an editor."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["update"] = "update"
    data: dict[str, Any] = Field(default_factory=dict)
    sender_id: str = Field(default="", alias="senderId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PayloadMessage(BaseModel):
    """Direct data message: merge (updateData) or replace (overrideData)."""

    type: Literal["updateData", "overrideData"]
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


ChannelMessage = UpdateMessage | PayloadMessage


def parse_message(raw: str | bytes | dict) -> ChannelMessage:
    """
    Parse a wire message.

    Raises:
        MessageError: Invalid JSON, unknown type or bad shape
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MessageError(f"Invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise MessageError("Message must be a JSON object")

    msg_type = raw.get("type")
    try:
        if msg_type == "update":
            return UpdateMessage.model_validate(raw)
        if msg_type in ("updateData", "overrideData"):
            return PayloadMessage.model_validate(raw)
    except ValidationError as e:
        raise MessageError(f"Malformed {msg_type} message: {e}") from e

    raise MessageError(f"Unknown message type: {msg_type!r}")


@runtime_checkable
class UpdateChannel(Protocol):
    """Transport from a non-authority client to the authority."""

    async def send(self, message: ChannelMessage) -> bool:
        """Transmit a message. Returns False if no authority can receive it."""
        ...


class LocalChannel:
    """
    In-process channel delivering straight to an authority service.

    Used by tests and by single-process setups that still want the
    authority/client split.
    """

    def __init__(self, authority: "StateService | None" = None):
        self.authority = authority
        self.sent: list[dict[str, Any]] = []

    async def send(self, message: ChannelMessage) -> bool:
        if self.authority is None or not self.authority.is_authority:
            return False
        wire = message.to_wire()
        self.sent.append(wire)
        await self.authority.receive(wire)
        return True
