"""
Reconciles the room history with live traffic into one ordered transcript.

History is fetched once per activation. Live messages arriving before the
fetch completes are buffered, then flushed right after the history entries,
so the transcript always reads history first, live traffic after, each in
its own order, whatever order the network completes in.
"""

import asyncio
import logging
from typing import Any, List, Optional

from webchat.core.errors import ChannelStateError, HistoryLoadFailure
from webchat.core.models import ChatMessage, TranscriptEntry, TranscriptSource
from webchat.services.http_client import IHttpGateway
from webchat.services.render import IRenderSink

logger = logging.getLogger(__name__)


def render_fragment(fragment: Any) -> str:
    """
    Turns a history fragment into display text.
    The server sends either pre-rendered strings or [timestamp, email, text]
    triples, rendered like live messages.
    """
    if isinstance(fragment, str):
        return fragment
    if isinstance(fragment, (list, tuple)) and len(fragment) == 3:
        timestamp, email, text = fragment
        return f"{timestamp} &lt;{email}&gt;: {text}"
    return str(fragment)


class HistoryReconciler:
    """Sequences history and live messages for one channel activation."""

    def __init__(self, http: IHttpGateway, sink: IRenderSink, room_id: str):
        self.http = http
        self.sink = sink
        self.room_id = room_id
        self._sequence = 0
        self._buffer: List[ChatMessage] = []
        self._loaded = False
        self._active = True
        self._load_task: Optional[asyncio.Task[None]] = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def begin_history_load(self, source: str) -> asyncio.Task[None]:
        """Starts the one history fetch of this activation."""
        if not self._active:
            raise ChannelStateError("History reconciler is closed")
        if self._load_task is not None:
            raise ChannelStateError("History was already requested for this activation")

        logger.info("Loading history for room %s from %s", self.room_id, source)
        self._load_task = asyncio.create_task(self._load(source))
        return self._load_task

    async def _load(self, source: str) -> None:
        try:
            history = await self.http.get_history(source)
        except HistoryLoadFailure as e:
            logger.warning("History unavailable for room %s, showing live traffic only: %s", self.room_id, e)
            history = []
        # pylint: disable=broad-exception-caught
        except Exception as e:
            # Live traffic stays buffered until this task ends, never leave it stuck.
            logger.error("History load crashed for room %s: %s", self.room_id, e)
            history = []

        if not self._active:
            logger.debug("Discarding history for closed room %s", self.room_id)
            return

        for fragment in history:
            await self._emit(render_fragment(fragment), TranscriptSource.HISTORY)

        # Messages may keep arriving while the sink is being awaited,
        # they land in the buffer and are drained here in order.
        while self._buffer and self._active:
            message = self._buffer.pop(0)
            await self._emit(message.display_text, TranscriptSource.LIVE)

        self._loaded = True
        logger.debug("History for room %s reconciled, %d entries", self.room_id, self._sequence)

    async def on_live_message(self, message: ChatMessage) -> None:
        """Emits a live message, or buffers it while history is loading."""
        if not self._active:
            return

        if not self._loaded:
            self._buffer.append(message)
            return

        await self._emit(message.display_text, TranscriptSource.LIVE)

    async def _emit(self, display_text: str, source: TranscriptSource) -> None:
        self._sequence += 1
        entry = TranscriptEntry(
            room_id=self.room_id,
            display_text=display_text,
            arrival_sequence=self._sequence,
            source=source,
        )
        await self.sink.append_transcript(entry)

    def close(self) -> None:
        """Stops the reconciler, a history completing afterwards is dropped."""
        self._active = False
        self._buffer.clear()
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
