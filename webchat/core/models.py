"""
Define the channel data model to ensure consistency between
the transport payloads and the synchronizer.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Session(BaseModel):
    """
    One channel activation: who is chatting, where, and where the
    room history lives. Frozen, a new room means a new Session.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    room_id: str
    history_source: str


class ChatMessage(BaseModel):
    """Live chat message as delivered on the client topic."""

    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomID", min_length=1)
    display_text: str = Field(alias="displayText")


class TranscriptSource(str, Enum):
    """Where a transcript entry came from."""

    HISTORY = "history"
    LIVE = "live"


class TranscriptEntry(BaseModel):
    """A sequenced line of the room transcript, ready for rendering."""

    room_id: str
    display_text: str
    arrival_sequence: int
    source: TranscriptSource


class PresenceSnapshot(BaseModel):
    """Full roster of a room. Replaces the previous one, never merged."""

    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomID", min_length=1)
    member_ids: List[str] = Field(alias="users", default_factory=list)


class Partaker(BaseModel):
    """A roster member with its resolved identity (None when the lookup failed)."""

    user_id: str
    display_identity: Optional[str] = None


class RoomDescriptor(BaseModel):
    """A known room. The server publishes rooms as {uuid, name}."""

    model_config = ConfigDict(populate_by_name=True)

    room_id: Optional[str] = Field(default=None, alias="uuid")
    display_name: str = Field(alias="name")


class OutboundChatMessage(BaseModel):
    """Payload published on the server topic when the user submits text."""

    user_id: str = Field(serialization_alias="userID")
    room_id: str = Field(serialization_alias="roomID")
    text: str

    def to_wire(self) -> str:
        """
        Wire representation with the server's camelCase keys.
        The server reads chat bodies as a JSON string, not an object.
        """
        return self.model_dump_json(by_alias=True)
