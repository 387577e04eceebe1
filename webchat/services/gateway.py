"""
Channel gateway, centralizes the shared transport and HTTP client and
keeps track of the channels opened on top of them.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Dict

from webchat.config.settings import settings
from webchat.core.models import RoomDescriptor, Session
from webchat.services.channel import ChannelController
from webchat.services.http_client import WebChatHttpClient
from webchat.services.render import WebSocketBridge
from webchat.services.transport import ITransport, RedisTransport

logger = logging.getLogger(__name__)


class IChannelGateway(ABC):
    """
    Abstract Interface for the channel management service.
    """

    @abstractmethod
    def is_ready(self) -> bool:
        """Checks if the transport is connected"""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Connects the shared transport."""
        pass

    @abstractmethod
    async def open_channel(self, user_id: str, room_id: str, bridge: WebSocketBridge) -> str:
        """
        Builds and activates a channel for (user, room).
        Returns the channel handle used by close_channel().
        """
        pass

    @abstractmethod
    def channel_count(self) -> int:
        """Number of open channels"""
        pass

    @abstractmethod
    async def create_room(self, name: str) -> RoomDescriptor:
        """Creates a room on the chat server, outside of any channel."""
        pass

    @abstractmethod
    def get_channel(self, channel_id: str) -> ChannelController:
        """Returns an open channel, KeyError if unknown."""
        pass

    @abstractmethod
    async def close_channel(self, channel_id: str) -> None:
        """Tears a channel down."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Tears every channel down and closes the transport."""
        pass


class LocalChannelGateway(IChannelGateway):
    """In-process gateway, one ChannelController per browser connection."""

    def __init__(self, transport: ITransport, http: WebChatHttpClient) -> None:
        self.transport = transport
        self.http = http
        self.channels: Dict[str, ChannelController] = {}
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    async def start(self) -> None:
        await self.transport.connect()
        self._ready = True

    async def open_channel(self, user_id: str, room_id: str, bridge: WebSocketBridge) -> str:
        session = Session(user_id=user_id, room_id=room_id, history_source=self.http.history_url(room_id))
        controller = ChannelController(
            transport=self.transport,
            http=self.http,
            sink=bridge,
            input_source=bridge,
            heartbeat_interval_ms=settings.heartbeat_interval_ms,
            request_timeout=settings.request_timeout,
        )

        channel_id = str(uuid.uuid4())
        self.channels[channel_id] = controller
        try:
            await controller.init(session)
        except Exception:
            await self.close_channel(channel_id)
            raise

        logger.info("Opened channel %s (%d active)", channel_id, len(self.channels))
        return channel_id

    def channel_count(self) -> int:
        return len(self.channels)

    async def create_room(self, name: str) -> RoomDescriptor:
        return await self.http.create_room(name)

    def get_channel(self, channel_id: str) -> ChannelController:
        return self.channels[channel_id]

    async def close_channel(self, channel_id: str) -> None:
        controller = self.channels.pop(channel_id, None)
        if controller is not None:
            await controller.teardown()

    async def shutdown(self) -> None:
        logger.info("Closing %d channels...", len(self.channels))
        for channel_id in list(self.channels):
            await self.close_channel(channel_id)

        if self._ready:
            await self.transport.close()
        self._ready = False
        logger.info("Gateway shutdown complete.")


gateway: IChannelGateway = LocalChannelGateway(
    transport=RedisTransport(settings.redis_url),
    http=WebChatHttpClient(
        base_url=settings.base_url,
        history_path=settings.history_path,
        new_room_path=settings.new_room_path,
        timeout=settings.request_timeout,
    ),
)
