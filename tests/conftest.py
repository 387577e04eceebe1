"""
Shared fakes for the channel tests.
The transport and render collaborators are replaced by in-memory recorders
so that tests control exactly when each reply or delivery happens.
"""

# pylint: disable=redefined-outer-name

import asyncio
from typing import Any, Dict, List, Tuple

import pytest

from webchat.core.models import Partaker, RoomDescriptor, TranscriptEntry
from webchat.services.render import IInputSource, IRenderSink
from webchat.services.transport import Handler, ITransport, Subscription


class FakeTransport(ITransport):
    """In-memory transport. Requests stay pending until the test answers them."""

    def __init__(self) -> None:
        self.connected = asyncio.Event()
        self.published: List[Tuple[str, Any]] = []
        self.handlers: Dict[str, List[Subscription]] = {}
        self.requests: List[Tuple[str, Any, asyncio.Future]] = []

    async def connect(self) -> None:
        self.connected.set()

    async def wait_connected(self) -> None:
        await self.connected.wait()

    async def subscribe(self, topic: str, handler: Handler) -> Subscription:
        subscription = Subscription(topic=topic, handler=handler)
        self.handlers.setdefault(topic, []).append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        handlers = self.handlers.get(subscription.topic, [])
        if subscription in handlers:
            handlers.remove(subscription)
        if not handlers:
            self.handlers.pop(subscription.topic, None)

    async def publish(self, topic: str, payload: Any) -> None:
        self.published.append((topic, payload))

    async def request(self, topic: str, payload: Any, timeout: float) -> Any:
        reply = asyncio.get_running_loop().create_future()
        self.requests.append((topic, payload, reply))
        return await reply

    async def close(self) -> None:
        self.handlers.clear()

    async def deliver(self, topic: str, payload: Any) -> None:
        """Simulates the server publishing payload on topic."""
        for subscription in self.handlers.get(topic, [])[:]:
            await subscription.handler(topic, payload)

    def lookups_for(self, user_id: str) -> List[asyncio.Future]:
        return [reply for _, payload, reply in self.requests if payload["params"]["uuid"] == user_id]

    def answer(self, user_id: str, email: str) -> None:
        """Completes every pending lookup for user_id."""
        for reply in self.lookups_for(user_id):
            if not reply.done():
                reply.set_result({"result": {"email": email}})


class RecordingSink(IRenderSink, IInputSource):
    """Render sink and input source keeping every event it receives."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    async def append_transcript(self, entry: TranscriptEntry) -> None:
        self.events.append(("transcript", entry))

    async def reset_partakers(self) -> None:
        self.events.append(("reset", None))

    async def update_partaker(self, partaker: Partaker) -> None:
        self.events.append(("partaker", partaker))

    async def replace_rooms(self, rooms: List[RoomDescriptor]) -> None:
        self.events.append(("rooms", rooms))

    async def room_created(self, room: RoomDescriptor) -> None:
        self.events.append(("room_created", room))

    async def clear(self) -> None:
        self.events.append(("clear", None))

    def of(self, kind: str) -> List[Any]:
        return [value for event, value in self.events if event == kind]

    def transcript(self) -> List[str]:
        return [entry.display_text for entry in self.of("transcript")]


async def _settle() -> None:
    # Lets every ready task run until they all block again
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Returns a coroutine function draining the ready tasks."""
    return _settle


@pytest.fixture
def transport() -> FakeTransport:
    """Connected in-memory transport."""
    fake = FakeTransport()
    fake.connected.set()
    return fake


@pytest.fixture
def sink() -> RecordingSink:
    """Recording render sink, doubles as the input source."""
    return RecordingSink()
