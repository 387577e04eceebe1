"""
HTTP access to the chat server: room history and room creation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List

import httpx

from webchat.core.errors import HistoryLoadFailure, RoomCreationFailure
from webchat.core.models import RoomDescriptor

logger = logging.getLogger(__name__)


class IHttpGateway(ABC):
    """
    Abstract interface for the chat server's HTTP endpoints.
    """

    @abstractmethod
    async def get_history(self, source: str) -> List[Any]:
        """
        Fetches the ordered history fragments found at source.
        Raises HistoryLoadFailure on any transport or format error.
        """
        pass

    @abstractmethod
    async def create_room(self, name: str) -> RoomDescriptor:
        """
        Asks the server to create (or find) a room by name.
        Raises RoomCreationFailure when the server refuses.
        """
        pass


class WebChatHttpClient(IHttpGateway):
    """httpx implementation against the /protected endpoints of the chat server."""

    def __init__(
        self,
        base_url: str,
        history_path: str = "/protected/history",
        new_room_path: str = "/protected/new-room/",
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.history_path = history_path.rstrip("/")
        self.new_room_path = new_room_path
        self.timeout = timeout

    def history_url(self, room_id: str) -> str:
        """Per-room history URL, used as Session.history_source."""
        return f"{self.base_url}{self.history_path}/{room_id}"

    def _absolute(self, source: str) -> str:
        if source.startswith(("http://", "https://")):
            return source
        return f"{self.base_url}/{source.lstrip('/')}"

    async def get_history(self, source: str) -> List[Any]:
        url = self._absolute(source)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(url, headers={"Accept": "application/json"})
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise HistoryLoadFailure(f"Could not load history from {url}: {e}") from e

        # The server wraps results in "data", older builds answer bare
        container = body.get("data", body) if isinstance(body, dict) else None
        history = container.get("history") if isinstance(container, dict) else None
        if not isinstance(history, list):
            raise HistoryLoadFailure(f"Malformed history response from {url}")

        logger.debug("Fetched %d history entries from %s", len(history), url)
        return history

    async def create_room(self, name: str) -> RoomDescriptor:
        url = f"{self.base_url}{self.new_room_path}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                # The server reads roomName from the request parameters
                response = await client.put(
                    url, params={"roomName": name}, headers={"Accept": "application/json"}
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise RoomCreationFailure(f"Could not create room '{name}': {e}") from e

        room = RoomDescriptor(name=name)
        try:
            body = response.json()
        except ValueError:
            body = None

        data = body.get("data", body) if isinstance(body, dict) else None
        if isinstance(data, dict) and data.get("uuid"):
            room = RoomDescriptor(uuid=data["uuid"], name=data.get("name", name))

        logger.info("Created room %s", name)
        return room
