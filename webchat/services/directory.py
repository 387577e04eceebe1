"""
User directory cache: resolves user IDs to display identities through
the data-store, with at most one lookup in flight per user.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from webchat.core import topics
from webchat.core.errors import LookupFailure, TransportError
from webchat.services.transport import ITransport

logger = logging.getLogger(__name__)


class UserDirectoryCache:
    """
    Maps user IDs to emails for the lifetime of one channel.

    Entries are never evicted; clear() is only called on teardown.
    Concurrent resolve() calls for the same ID share one pending lookup
    and are released in the order they queued.
    """

    def __init__(self, transport: ITransport, timeout: float = 5.0):
        self.transport = transport
        self.timeout = timeout
        self._entries: Dict[str, str] = {}
        self._pending: Dict[str, asyncio.Future[str]] = {}
        self._lookups: Set[asyncio.Task[None]] = set()
        self._generation = 0

    def __len__(self) -> int:
        return len(self._entries)

    def cached(self, user_id: str) -> Optional[str]:
        """Returns the cached identity without triggering a lookup."""
        return self._entries.get(user_id)

    def is_pending(self, user_id: str) -> bool:
        return user_id in self._pending

    async def resolve(self, user_id: str) -> str:
        """
        Returns the display identity of user_id.
        Raises LookupFailure if the data-store lookup fails.
        """
        if user_id in self._entries:
            return self._entries[user_id]

        pending = self._pending.get(user_id)
        if pending is None:
            pending = asyncio.get_running_loop().create_future()
            self._pending[user_id] = pending

            task = asyncio.create_task(self._lookup(user_id, pending, self._generation))
            self._lookups.add(task)
            task.add_done_callback(self._lookups.discard)
        else:
            logger.debug("Lookup for %s already in flight, queueing", user_id)

        # One waiter being cancelled must not cancel the shared lookup
        return await asyncio.shield(pending)

    async def _lookup(self, user_id: str, pending: asyncio.Future[str], generation: int) -> None:
        query = {"type": topics.FIND_USER_BY_UUID, "params": {"uuid": user_id}}

        try:
            reply = await self.transport.request(topics.DATA_STORE, query, self.timeout)
            email = self._parse_reply(reply)
        except (TransportError, LookupError, TypeError) as e:
            logger.warning("User lookup failed for %s: %s", user_id, e)
            self._release(user_id, pending)
            if not pending.done():
                pending.set_exception(LookupFailure(user_id, str(e)))
            return

        if generation == self._generation:
            self._entries[user_id] = email
        self._release(user_id, pending)
        if not pending.done():
            pending.set_result(email)

    def _release(self, user_id: str, pending: asyncio.Future[str]) -> None:
        if self._pending.get(user_id) is pending:
            del self._pending[user_id]

    @staticmethod
    def _parse_reply(reply: Any) -> str:
        email = reply["result"]["email"]
        if not isinstance(email, str) or not email:
            raise LookupError("reply carries no email")
        return email

    def clear(self) -> None:
        """
        Drops every entry and abandons the lookups still in flight.
        Late replies are never cached.
        """
        self._generation += 1
        self._entries.clear()

        for task in list(self._lookups):
            task.cancel()
        for pending in self._pending.values():
            pending.cancel()
        self._pending.clear()
