"""
Rendering and input collaborators of a channel.
The channel only exposes data; what the user sees is decided here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from fastapi import WebSocket

from webchat.core.models import Partaker, RoomDescriptor, TranscriptEntry

logger = logging.getLogger(__name__)


class IRenderSink(ABC):
    """
    Abstract interface for whatever renders a channel.
    """

    @abstractmethod
    async def append_transcript(self, entry: TranscriptEntry) -> None:
        """Appends one sequenced line to the transcript."""
        pass

    @abstractmethod
    async def reset_partakers(self) -> None:
        """A new roster arrived, forget the displayed one."""
        pass

    @abstractmethod
    async def update_partaker(self, partaker: Partaker) -> None:
        """Shows one resolved member of the current roster."""
        pass

    @abstractmethod
    async def replace_rooms(self, rooms: List[RoomDescriptor]) -> None:
        """Replaces the whole room list."""
        pass

    @abstractmethod
    async def room_created(self, room: RoomDescriptor) -> None:
        """A room creation requested by this channel completed."""
        pass


class IInputSource(ABC):
    """Abstract interface for the user input capture."""

    @abstractmethod
    async def clear(self) -> None:
        """Empties the input buffer after a successful submit."""
        pass


class WebSocketBridge(IRenderSink, IInputSource):
    """
    Forwards render events to a browser over a WebSocket, as JSON frames
    {"type": ..., ...}. The browser owns the DOM and the input box.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def _send(self, event: Dict[str, Any]) -> None:
        try:
            await self.websocket.send_json(event)
        # pylint: disable=broad-exception-caught
        except Exception as e:
            logger.warning("Error sending to WS: %s", e)

    async def append_transcript(self, entry: TranscriptEntry) -> None:
        await self._send({"type": "transcript", "entry": entry.model_dump(mode="json")})

    async def reset_partakers(self) -> None:
        await self._send({"type": "partakers-reset"})

    async def update_partaker(self, partaker: Partaker) -> None:
        await self._send({"type": "partaker", "partaker": partaker.model_dump(mode="json")})

    async def replace_rooms(self, rooms: List[RoomDescriptor]) -> None:
        await self._send({"type": "rooms", "rooms": [room.model_dump(mode="json") for room in rooms]})

    async def room_created(self, room: RoomDescriptor) -> None:
        await self._send({"type": "room-created", "room": room.model_dump(mode="json")})

    async def clear(self) -> None:
        await self._send({"type": "clear-input"})

    async def report_error(self, detail: str) -> None:
        """Tells the browser a request of theirs failed."""
        await self._send({"type": "error", "detail": detail})
