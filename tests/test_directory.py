"""
Unit tests for the UserDirectoryCache.
Focuses on lookup deduplication, failure handling and teardown.
"""

# pylint: disable=redefined-outer-name

import asyncio

import pytest

from webchat.core.errors import LookupFailure, TransportError
from webchat.services.directory import UserDirectoryCache


@pytest.fixture
def directory(transport) -> UserDirectoryCache:
    """Fixture that provides a cache on top of the fake transport."""
    return UserDirectoryCache(transport, timeout=1.0)


@pytest.mark.asyncio
async def test_lookup_request_format(directory, transport, settle) -> None:
    """The data-store query must match what the server expects."""
    task = asyncio.create_task(directory.resolve("u1"))
    await settle()

    topic, payload, _ = transport.requests[0]
    assert topic == "webchat.data-store"
    assert payload == {"type": "find-user-by-uuid", "params": {"uuid": "u1"}}

    transport.answer("u1", "alice@example.com")
    assert await task == "alice@example.com"


@pytest.mark.asyncio
async def test_concurrent_resolves_share_one_lookup(directory, transport, settle) -> None:
    """Concurrent callers for one ID issue a single request and get the same identity."""
    tasks = [asyncio.create_task(directory.resolve("u1")) for _ in range(3)]
    await settle()

    assert len(transport.requests) == 1
    assert directory.is_pending("u1")

    transport.answer("u1", "alice@example.com")
    results = await asyncio.gather(*tasks)

    assert results == ["alice@example.com"] * 3
    assert not directory.is_pending("u1")
    assert directory.cached("u1") == "alice@example.com"


@pytest.mark.asyncio
async def test_cached_identity_skips_lookup(directory, transport, settle) -> None:
    """Once cached, resolve() never goes back to the data-store."""
    task = asyncio.create_task(directory.resolve("u1"))
    await settle()
    transport.answer("u1", "alice@example.com")
    await task

    assert await directory.resolve("u1") == "alice@example.com"
    assert len(transport.requests) == 1
    assert len(directory) == 1


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_allows_retry(directory, transport, settle) -> None:
    """A failed lookup fails all queued callers and leaves the cache clean."""
    tasks = [asyncio.create_task(directory.resolve("u1")) for _ in range(2)]
    await settle()

    transport.requests[0][2].set_exception(TransportError("no reply"))
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(result, LookupFailure) for result in results)
    assert results[0].user_id == "u1"
    assert not directory.is_pending("u1")
    assert directory.cached("u1") is None

    # Next occurrence retries
    retry = asyncio.create_task(directory.resolve("u1"))
    await settle()
    assert len(transport.requests) == 2
    transport.answer("u1", "alice@example.com")
    assert await retry == "alice@example.com"


@pytest.mark.asyncio
async def test_malformed_reply_is_a_lookup_failure(directory, transport, settle) -> None:
    """A reply without result.email is reported as a failure, not cached."""
    task = asyncio.create_task(directory.resolve("u1"))
    await settle()

    transport.requests[0][2].set_result({"result": None})

    with pytest.raises(LookupFailure):
        await task
    assert directory.cached("u1") is None


@pytest.mark.asyncio
async def test_lookups_for_different_users_are_independent(directory, transport, settle) -> None:
    """Each user gets its own request, completions can come in any order."""
    first = asyncio.create_task(directory.resolve("u1"))
    second = asyncio.create_task(directory.resolve("u2"))
    await settle()

    assert len(transport.requests) == 2

    transport.answer("u2", "bob@example.com")
    assert await second == "bob@example.com"
    assert not first.done()

    transport.answer("u1", "alice@example.com")
    assert await first == "alice@example.com"


@pytest.mark.asyncio
async def test_clear_abandons_pending_lookups(directory, transport, settle) -> None:
    """After clear(), a pending lookup is dropped and nothing gets cached."""
    done = asyncio.create_task(directory.resolve("u1"))
    await settle()
    transport.answer("u1", "alice@example.com")
    await done

    pending = asyncio.create_task(directory.resolve("u2"))
    await settle()

    directory.clear()
    await settle()

    with pytest.raises(asyncio.CancelledError):
        await pending

    assert len(directory) == 0
    assert not directory.is_pending("u2")
    assert directory.cached("u2") is None


@pytest.mark.asyncio
async def test_waiters_released_in_queue_order(directory, transport, settle) -> None:
    """Callers queued on one lookup complete in the order they asked."""
    completed = []

    async def waiter(name: str) -> None:
        await directory.resolve("u1")
        completed.append(name)

    tasks = []
    for name in ("first", "second", "third"):
        tasks.append(asyncio.create_task(waiter(name)))
        await settle()

    assert len(transport.requests) == 1
    transport.answer("u1", "alice@example.com")
    await asyncio.gather(*tasks)

    assert completed == ["first", "second", "third"]
