"""
Periodic presence publication for the active (user, room) pair.
"""

import asyncio
import logging
from typing import Optional

from webchat.core import topics
from webchat.core.errors import ChannelStateError
from webchat.core.models import Session
from webchat.services.transport import ITransport

logger = logging.getLogger(__name__)


class PresenceHeartbeat:
    """Publishes an update-presence query on every tick until stopped."""

    def __init__(self, transport: ITransport):
        self.transport = transport
        self.ticks = 0
        self._running = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self, session: Session, interval_ms: int) -> None:
        """Starts ticking, the first publication happens right away."""
        if interval_ms <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {interval_ms}")
        if self._running:
            raise ChannelStateError("Heartbeat already started")

        self._running = True
        self._task = asyncio.create_task(self._run(session, interval_ms / 1000))
        logger.info("Heartbeat started for %s in %s every %d ms", session.user_id, session.room_id, interval_ms)

    async def _run(self, session: Session, interval: float) -> None:
        payload = {
            "type": topics.UPDATE_PRESENCE,
            "params": {"userID": session.user_id, "roomID": session.room_id},
        }

        try:
            while self._running:
                try:
                    await self.transport.publish(topics.PRESENCE, payload)
                    self.ticks += 1
                # pylint: disable=broad-exception-caught
                except Exception as e:
                    logger.error("Heartbeat error: %s", e)

                await asyncio.sleep(interval)
        finally:
            # stop() already reset the flag, a restarted heartbeat owns it now
            if self._task is asyncio.current_task():
                self._running = False

    def stop(self) -> None:
        """
        Cancels the timer. Nothing is published once this returns,
        a second call does nothing.
        """
        if self._task is None:
            return

        self._running = False
        self._task.cancel()
        self._task = None
        logger.info("Heartbeat stopped after %d ticks", self.ticks)
