"""Data Resolver: lazy, size-dependent materialization of a record's payload.

Small payloads arrive inline with the message and are served from that copy.
Larger ones are fetched on first access with one secondary read against the
record's target; concurrent first accesses share a single pending fetch, and
the bytes are cached for every later view.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from dwnclient.errors import ValidationError

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[bytes]]


class DataResolver:
    """Byte, text and structured views over one record's payload."""

    def __init__(
        self,
        cid: str,
        size: int,
        data: Optional[bytes] = None,
        fetch: Optional[Fetcher] = None,
    ):
        self.cid = cid
        self.size = size
        self._data = data
        self._fetch = fetch
        self._pending: Optional["asyncio.Future[bytes]"] = None
        self.fetch_count = 0

    @property
    def is_resolved(self) -> bool:
        return self._data is not None

    async def _fetch_once(self, cid: str) -> bytes:
        if self._fetch is None:
            raise ValidationError(f"No data source for payload {cid}")
        self.fetch_count += 1
        logger.debug(f"Fetching payload {cid} ({self.size} bytes)")
        data = await self._fetch()
        # Reset while in flight: the result belongs to the old payload.
        if self.cid == cid:
            self._data = data
        return data

    async def bytes(self) -> bytes:
        if self._data is not None:
            return self._data
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._fetch_once(self.cid))
        pending = self._pending
        try:
            return await asyncio.shield(pending)
        except BaseException:
            # A failed fetch may be retried by a later access.
            if pending.done() and self._pending is pending and self._data is None:
                self._pending = None
            raise

    async def text(self) -> str:
        data = await self.bytes()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as ex:
            raise ValidationError(f"Payload {self.cid} is not valid UTF-8 text") from ex

    async def json(self) -> Any:
        text = await self.text()
        try:
            return json.loads(text)
        except ValueError as ex:
            raise ValidationError(f"Payload {self.cid} is not valid JSON") from ex

    def reset(self, cid: str, size: int, data: Optional[bytes] = None) -> None:
        """Point the resolver at a new payload (after an update)."""
        self.cid = cid
        self.size = size
        self._data = data
        self._pending = None
