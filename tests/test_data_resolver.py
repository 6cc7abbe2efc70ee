import asyncio

import pytest

from dwnclient.data import DataResolver
from dwnclient.errors import NotFoundError, ValidationError


def _counting_fetch(payload: bytes, delay: float = 0.0):
    calls = []

    async def fetch() -> bytes:
        calls.append(1)
        if delay:
            await asyncio.sleep(delay)
        return payload

    return fetch, calls


def test_inline_payload_needs_no_fetch():
    fetch, calls = _counting_fetch(b"unused")
    resolver = DataResolver("bcid", 5, data=b'{"a":1}', fetch=fetch)

    async def run():
        assert await resolver.bytes() == b'{"a":1}'
        assert await resolver.text() == '{"a":1}'
        assert await resolver.json() == {"a": 1}

    asyncio.run(run())
    assert calls == []
    assert resolver.fetch_count == 0
    assert resolver.is_resolved


def test_all_views_share_one_fetch():
    fetch, calls = _counting_fetch(b'["x"]')
    resolver = DataResolver("bcid", 5, fetch=fetch)
    assert not resolver.is_resolved

    async def run():
        for _ in range(3):
            assert await resolver.json() == ["x"]
            assert await resolver.text() == '["x"]'
            assert await resolver.bytes() == b'["x"]'

    asyncio.run(run())
    assert len(calls) == 1
    assert resolver.fetch_count == 1


def test_concurrent_first_access_is_single_flight():
    fetch, calls = _counting_fetch(b"payload", delay=0.01)
    resolver = DataResolver("bcid", 7, fetch=fetch)

    async def run():
        return await asyncio.gather(
            resolver.bytes(),
            resolver.text(),
            resolver.bytes(),
            resolver.text(),
        )

    results = asyncio.run(run())
    assert results == [b"payload", "payload", b"payload", "payload"]
    assert len(calls) == 1


def test_not_found_propagates_and_a_later_access_retries():
    calls = []

    async def fetch() -> bytes:
        calls.append(1)
        if len(calls) == 1:
            raise NotFoundError("gone")
        return b"back"

    resolver = DataResolver("bcid", 4, fetch=fetch)

    async def run():
        with pytest.raises(NotFoundError):
            await resolver.bytes()
        assert await resolver.bytes() == b"back"

    asyncio.run(run())
    assert len(calls) == 2


def test_without_source():
    resolver = DataResolver("bcid", 4)
    with pytest.raises(ValidationError):
        asyncio.run(resolver.bytes())


def test_bad_text_and_json_views():
    async def run(resolver, view):
        return await getattr(resolver, view)()

    with pytest.raises(ValidationError, match="UTF-8"):
        asyncio.run(run(DataResolver("bcid", 2, data=b"\xff\xfe"), "text"))
    with pytest.raises(ValidationError, match="JSON"):
        asyncio.run(run(DataResolver("bcid", 3, data=b"{no"), "json"))


def test_reset_points_at_new_payload():
    fetch, calls = _counting_fetch(b"fetched")
    resolver = DataResolver("bold", 3, data=b"old", fetch=fetch)
    resolver.reset("bnew", 7)
    assert (resolver.cid, resolver.size) == ("bnew", 7)
    assert asyncio.run(resolver.bytes()) == b"fetched"
    assert len(calls) == 1


def test_reset_during_a_pending_fetch_keeps_the_new_payload():
    events = {}

    async def slow_fetch() -> bytes:
        await events["release"].wait()
        return b"old"

    resolver = DataResolver("bold", 3, fetch=slow_fetch)

    async def run():
        events["release"] = asyncio.Event()
        first = asyncio.ensure_future(resolver.bytes())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        resolver.reset("bnew", 3, b"new")
        events["release"].set()
        stale = await first
        return stale, await resolver.bytes()

    stale, current = asyncio.run(run())
    assert stale == b"old"
    assert current == b"new"
    assert resolver.cid == "bnew"
