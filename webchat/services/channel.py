"""
Channel controller: owns one Session and composes the room components
into a single lifecycle.
"""

import logging
from enum import Enum
from typing import Any, List, Optional

from webchat.config.settings import settings
from webchat.core import topics
from webchat.core.errors import ChannelStateError, TransportError
from webchat.core.models import OutboundChatMessage, RoomDescriptor, Session
from webchat.services.directory import UserDirectoryCache
from webchat.services.heartbeat import PresenceHeartbeat
from webchat.services.history import HistoryReconciler
from webchat.services.http_client import IHttpGateway
from webchat.services.render import IInputSource, IRenderSink
from webchat.services.router import RoomMessageRouter
from webchat.services.transport import ITransport, Subscription

logger = logging.getLogger(__name__)


class ChannelState(Enum):
    """Lifecycle of a channel. TORN_DOWN is terminal."""

    UNINITIALIZED = "UNINITIALIZED"
    ACTIVE = "ACTIVE"
    TORN_DOWN = "TORN_DOWN"


# pylint: disable=too-many-instance-attributes
class ChannelController:
    """
    One user's live view of one room.

    init() wires the transport into the router, starts the history load and
    the heartbeat; teardown() undoes all of it. A controller is single use:
    switching room means tearing down and building a new one.
    """

    def __init__(
        self,
        transport: ITransport,
        http: IHttpGateway,
        sink: IRenderSink,
        input_source: IInputSource,
        heartbeat_interval_ms: Optional[int] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self.transport = transport
        self.http = http
        self.sink = sink
        self.input_source = input_source
        self.heartbeat_interval_ms = (
            settings.heartbeat_interval_ms if heartbeat_interval_ms is None else heartbeat_interval_ms
        )
        self.request_timeout = settings.request_timeout if request_timeout is None else request_timeout
        if self.heartbeat_interval_ms <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {self.heartbeat_interval_ms}")

        self._state = ChannelState.UNINITIALIZED
        self._session: Optional[Session] = None
        self._subscriptions: List[Subscription] = []

        self.directory: Optional[UserDirectoryCache] = None
        self.reconciler: Optional[HistoryReconciler] = None
        self.router: Optional[RoomMessageRouter] = None
        self.heartbeat = PresenceHeartbeat(transport)

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def _require_active(self, operation: str) -> Session:
        if self._state is not ChannelState.ACTIVE or self._session is None:
            raise ChannelStateError(f"Cannot {operation}: channel is {self._state.value}")
        return self._session

    async def init(self, session: Session) -> None:
        """
        Activates the channel for session.
        Handlers are registered before the history load starts so that no
        live message can slip between the two.
        """
        if self._state is not ChannelState.UNINITIALIZED:
            raise ChannelStateError(f"Cannot init: channel is {self._state.value}")

        self._state = ChannelState.ACTIVE
        self._session = session
        logger.info("Activating channel for %s in room %s", session.user_id, session.room_id)

        self.directory = UserDirectoryCache(self.transport, timeout=self.request_timeout)
        self.reconciler = HistoryReconciler(self.http, self.sink, session.room_id)
        self.router = RoomMessageRouter(session.room_id, self.reconciler, self.directory, self.sink)

        await self.transport.wait_connected()

        for topic, handler in (
            (topics.CLIENT, self.router.on_client_payload),
            (topics.partakers(session.room_id), self.router.on_partakers_payload),
            (topics.ROOMS, self.router.on_rooms_payload),
        ):
            subscription = await self.transport.subscribe(topic, handler)
            self._subscriptions.append(subscription)

            # teardown() may have run while we were suspended
            if self._state is not ChannelState.ACTIVE:
                await self._unsubscribe_all()
                return

        self.reconciler.begin_history_load(session.history_source)
        self.heartbeat.start(session, self.heartbeat_interval_ms)

    async def submit(self, text: str) -> bool:
        """
        Publishes text to the room. Blank text is ignored.
        Returns True when the message went out and the input was cleared.
        """
        session = self._require_active("submit")
        if not text or not text.strip():
            return False

        message = OutboundChatMessage(user_id=session.user_id, room_id=session.room_id, text=text)
        try:
            await self.transport.publish(topics.SERVER, message.to_wire())
        except TransportError as e:
            # Keep the text in the input so the user can try again
            logger.error("Could not send message to room %s: %s", session.room_id, e)
            return False

        await self.input_source.clear()
        return True

    async def create_room(self, name: str) -> RoomDescriptor:
        """
        Asks the server for a new room. Failures reach the caller, no retry.
        """
        self._require_active("create a room")
        if not name or not name.strip():
            raise ValueError("Room name cannot be empty")

        room = await self.http.create_room(name.strip())

        if self._state is ChannelState.ACTIVE:
            await self.sink.room_created(room)
        return room

    async def teardown(self) -> None:
        """
        Stops the heartbeat, drops pending work and unregisters the handlers.
        Calling it again does nothing.
        """
        if self._state is ChannelState.TORN_DOWN:
            return

        previous = self._state
        self._state = ChannelState.TORN_DOWN
        if previous is ChannelState.UNINITIALIZED:
            return

        self.heartbeat.stop()
        if self.router:
            self.router.close()
        if self.reconciler:
            self.reconciler.close()
        if self.directory:
            self.directory.clear()

        await self._unsubscribe_all()

        if self._session:
            logger.info("Channel for %s in room %s torn down", self._session.user_id, self._session.room_id)

    async def _unsubscribe_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await self.transport.unsubscribe(subscription)
            except TransportError as e:
                logger.error("Could not unregister handler for %s: %s", subscription.topic, e)

    async def __aenter__(self) -> "ChannelController":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.teardown()
