"""
Publish/subscribe transport over Redis Pub/Sub.
Carries chat, presence and data-store traffic between the channel and the chat server.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from webchat.core.errors import TransportError

logger = logging.getLogger(__name__)

# (topic, payload) -> None
Handler = Callable[[str, Any], Awaitable[None]]


@dataclass(eq=False)
class Subscription:
    """Registration handle returned by subscribe(), used to unsubscribe."""

    topic: str
    handler: Handler


class ITransport(ABC):
    """
    Abstract interface for the pub/sub fabric.
    subscribe/publish/request are only valid once the transport is connected.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Opens the underlying connection and signals readiness."""
        pass

    @abstractmethod
    async def wait_connected(self) -> None:
        """Suspends until the transport is ready."""
        pass

    @abstractmethod
    async def subscribe(self, topic: str, handler: Handler) -> Subscription:
        """Registers a handler for every payload delivered on topic."""
        pass

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        """Removes a handler registered with subscribe()."""
        pass

    @abstractmethod
    async def publish(self, topic: str, payload: Any) -> None:
        """Fire and forget delivery to every subscriber of topic."""
        pass

    @abstractmethod
    async def request(self, topic: str, payload: Any, timeout: float) -> Any:
        """Sends payload to topic and waits for a single reply."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Releases the connection and every subscription."""
        pass


class RedisTransport(ITransport):
    """
    Redis backed transport.
    Every message is a JSON envelope {"body": ..., "replyAddress": ...};
    requests wait on a private reply channel.
    """

    def __init__(self, redis_url: str, retry_delay: float = 1.0) -> None:
        self.redis_url = redis_url
        self.retry_delay = retry_delay
        self._client: Optional[redis.Redis] = None
        self._pubsub: Optional[Any] = None
        self._handlers: Dict[str, List[Subscription]] = {}
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._connected = asyncio.Event()

    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def connect(self) -> None:
        if self.is_connected():
            return

        self._client = redis.from_url(self.redis_url, decode_responses=True)  # type: ignore[no-untyped-call]
        try:
            await self._client.ping()
        except RedisError as e:
            raise TransportError(f"Could not connect to {self.redis_url}: {e}") from e

        self._pubsub = self._client.pubsub()
        self._connected.set()
        logger.info("Transport connected to %s", self.redis_url)

    async def wait_connected(self) -> None:
        await self._connected.wait()

    def _ensure_connected(self) -> None:
        if not self.is_connected() or self._client is None or self._pubsub is None:
            raise TransportError("Transport is not connected")

    async def subscribe(self, topic: str, handler: Handler) -> Subscription:
        self._ensure_connected()
        subscription = Subscription(topic=topic, handler=handler)

        if topic not in self._handlers:
            try:
                await self._pubsub.subscribe(topic)  # type: ignore[union-attr]
            except RedisError as e:
                raise TransportError(f"Could not subscribe to {topic}: {e}") from e
            self._handlers[topic] = []
            logger.debug("Subscribed to channel: %s", topic)

        self._handlers[topic].append(subscription)

        # The pubsub connection only exists after the first subscribe
        if self._listener_task is None:
            self._listener_task = asyncio.create_task(self._listen())

        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        handlers = self._handlers.get(subscription.topic)
        if not handlers or subscription not in handlers:
            return

        handlers.remove(subscription)

        # Cleanup the channel if nobody listens anymore.
        if not handlers:
            del self._handlers[subscription.topic]
            if self._pubsub is not None:
                try:
                    await self._pubsub.unsubscribe(subscription.topic)
                except RedisError as e:
                    raise TransportError(f"Could not unsubscribe from {subscription.topic}: {e}") from e
            logger.debug("Unsubscribed from channel: %s", subscription.topic)

    async def publish(self, topic: str, payload: Any) -> None:
        await self._send(topic, payload, reply_address=None)

    async def request(self, topic: str, payload: Any, timeout: float) -> Any:
        reply_address = f"{topic}.reply.{uuid.uuid4()}"
        reply: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        async def on_reply(_: str, body: Any) -> None:
            if not reply.done():
                reply.set_result(body)

        subscription = await self.subscribe(reply_address, on_reply)
        try:
            await self._send(topic, payload, reply_address=reply_address)
            return await asyncio.wait_for(reply, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"No reply on {topic} within {timeout}s") from e
        finally:
            await self.unsubscribe(subscription)

    async def _send(self, topic: str, payload: Any, reply_address: Optional[str]) -> None:
        self._ensure_connected()
        envelope = json.dumps({"body": payload, "replyAddress": reply_address})
        try:
            await self._client.publish(topic, envelope)  # type: ignore[union-attr]
        except RedisError as e:
            raise TransportError(f"Could not publish to {topic}: {e}") from e

    async def _listen(self) -> None:
        """
        Background task delivering Redis messages to the registered handlers.
        """
        try:
            while self._handlers:
                try:
                    message = await self._pubsub.get_message(  # type: ignore[union-attr]
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                except RedisError as e:
                    # Handlers are still registered, keep polling
                    logger.error("Redis listener error, retrying in %ss: %s", self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                    continue

                if message is None or message.get("type") != "message":
                    continue
                await self.dispatch(message["channel"], message["data"])
        except asyncio.CancelledError:
            logger.debug("Transport listener cancelled")
            raise
        finally:
            self._listener_task = None

    async def dispatch(self, topic: str, raw: str) -> None:
        """
        Decodes one envelope and hands its body to every handler of topic.
        A malformed envelope or a failing handler never stops the listener.
        """
        try:
            body = json.loads(raw)["body"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Could not parse message on %s: %s", topic, e)
            return

        for subscription in self._handlers.get(topic, [])[:]:
            try:
                await subscription.handler(topic, body)
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.error("Handler for %s failed: %s", topic, e)

    async def close(self) -> None:
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        self._handlers.clear()
        if self._pubsub is not None:
            await self._pubsub.aclose()
        if self._client is not None:
            await self._client.aclose()

        self._pubsub = None
        self._client = None
        self._connected.clear()
        logger.info("Transport closed.")
