"""
Routes inbound transport traffic to the active room's components.
Anything addressed to another room, or malformed, is dropped.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Type, TypeVar

from pydantic import BaseModel, ValidationError

from webchat.core import topics
from webchat.core.errors import LookupFailure
from webchat.core.models import ChatMessage, Partaker, PresenceSnapshot, RoomDescriptor
from webchat.services.directory import UserDirectoryCache
from webchat.services.history import HistoryReconciler
from webchat.services.render import IRenderSink

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _decode(payload: Any) -> Any:
    if isinstance(payload, (str, bytes)):
        return json.loads(payload)
    return payload


class RoomMessageRouter:
    """
    Scopes chat messages and presence rosters to one room and forwards
    room lists untouched.
    """

    def __init__(
        self,
        room_id: str,
        reconciler: HistoryReconciler,
        directory: UserDirectoryCache,
        sink: IRenderSink,
    ):
        self.room_id = room_id
        self.reconciler = reconciler
        self.directory = directory
        self.sink = sink

        # Current view, fully replaced on each roster / room list
        self.partakers: Dict[str, Partaker] = {}
        self.rooms: List[RoomDescriptor] = []

        self._roster_generation = 0
        self._resolutions: Set[asyncio.Task[None]] = set()
        self._active = True

    # === Typed routing ===

    async def route_inbound_message(self, message: ChatMessage) -> bool:
        """Returns False when the message belongs to another room."""
        if not self._active or message.room_id != self.room_id:
            return False

        await self.reconciler.on_live_message(message)
        return True

    async def route_presence_snapshot(self, snapshot: PresenceSnapshot) -> bool:
        """
        Replaces the displayed roster and resolves each member.
        Cached members show up right away, the others one by one
        as their lookups complete.
        """
        if not self._active or snapshot.room_id != self.room_id:
            return False

        self._roster_generation += 1
        generation = self._roster_generation
        self.partakers = {}
        await self.sink.reset_partakers()

        for member_id in dict.fromkeys(snapshot.member_ids):
            identity = self.directory.cached(member_id)
            if identity is not None:
                await self._show(Partaker(user_id=member_id, display_identity=identity), generation)
                continue

            task = asyncio.create_task(self._resolve_partaker(member_id, generation))
            self._resolutions.add(task)
            task.add_done_callback(self._resolutions.discard)

        return True

    async def route_room_roster(self, rooms: Iterable[RoomDescriptor]) -> None:
        """Full replace of the known rooms."""
        if not self._active:
            return

        self.rooms = list(rooms)
        await self.sink.replace_rooms(list(self.rooms))

    async def _resolve_partaker(self, member_id: str, generation: int) -> None:
        identity: Optional[str]
        try:
            identity = await self.directory.resolve(member_id)
        except LookupFailure as e:
            logger.warning("Showing partaker %s without identity: %s", member_id, e)
            identity = None

        await self._show(Partaker(user_id=member_id, display_identity=identity), generation)

    async def _show(self, partaker: Partaker, generation: int) -> None:
        # A newer roster supersedes whatever is still resolving.
        if not self._active or generation != self._roster_generation:
            return

        self.partakers[partaker.user_id] = partaker
        await self.sink.update_partaker(partaker)

    # === Transport handlers ===

    @staticmethod
    def _parse(model: Type[ModelT], payload: Any) -> Optional[ModelT]:
        try:
            return model.model_validate(_decode(payload))
        except (ValidationError, ValueError) as e:
            logger.debug("Dropping malformed %s payload: %s", model.__name__, e)
            return None

    async def on_client_payload(self, topic: str, payload: Any) -> None:
        """Handler for the shared chat topic."""
        message = self._parse(ChatMessage, payload)
        if message is None:
            return

        if not await self.route_inbound_message(message):
            logger.debug("Ignoring message for room %s on %s", message.room_id, topic)

    async def on_partakers_payload(self, topic: str, payload: Any) -> None:
        """Handler for the room-scoped roster topic, payload {"users": [...]}."""
        try:
            data = _decode(payload)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.debug("Dropping malformed roster on %s", topic)
            return

        # The server only names the room in the topic
        if "roomID" not in data:
            data = {**data, "roomID": topics.room_from_partakers(topic)}

        snapshot = self._parse(PresenceSnapshot, data)
        if snapshot is not None:
            await self.route_presence_snapshot(snapshot)

    async def on_rooms_payload(self, topic: str, payload: Any) -> None:
        """Handler for the global room list, payload {"rooms": [...]}."""
        try:
            data = _decode(payload)
        except ValueError:
            data = None
        if not isinstance(data, dict) or not isinstance(data.get("rooms"), list):
            logger.debug("Dropping malformed room list on %s", topic)
            return

        rooms = []
        for raw in data["rooms"]:
            room = self._parse(RoomDescriptor, raw)
            if room is None:
                return
            rooms.append(room)

        await self.route_room_roster(rooms)

    def close(self) -> None:
        """Drops pending resolutions, nothing reaches the sink afterwards."""
        self._active = False
        for task in list(self._resolutions):
            task.cancel()
        self._resolutions.clear()
