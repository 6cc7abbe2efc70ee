"""
JSON-RPC over HTTP transport for remote DWN nodes.

Each message is posted as one JSON-RPC 2.0 call:

    {"jsonrpc": "2.0", "id": "<uuid>", "method": "dwn.processMessage",
     "params": {"target": "<did>", "message": {...}, "encodedData": "<b64url>"}}

`encodedData` is present only for payloads at or below the inline threshold.
Larger payloads are sent out of band: the raw bytes form the HTTP body
(`application/octet-stream`) and the JSON-RPC call travels in the
`dwn-request` header.

The node answers with `{"result": {"reply": {...}}}`. Every failure below
the protocol (connection errors, timeouts, HTTP errors, JSON-RPC error objects,
replies that are not JSON) raises `TransportError`. No retries are attempted.

Usage:
    async with RpcTransport() as transport:
        router.register_transport("https", transport)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

from dwnclient.config import DwnConfig, get_config
from dwnclient.errors import TransportError
from dwnclient.messages import SignedMessage

logger = logging.getLogger(__name__)

RPC_METHOD = "dwn.processMessage"
DWN_REQUEST_HEADER = "dwn-request"


def timeout_from_config(config: Optional[DwnConfig] = None) -> ClientTimeout:
    cfg = config or get_config()
    return ClientTimeout(
        total=float(cfg.rpc.timeout_seconds.get()),
        connect=float(cfg.rpc.connect_timeout_seconds.get()),
    )


def build_request(target: str, message: Dict[str, Any], encoded_data: Optional[str] = None) -> Dict[str, Any]:
    params: Dict[str, Any] = {"target": target, "message": message}
    if encoded_data is not None:
        params["encodedData"] = encoded_data
    return {
        "jsonrpc": "2.0",
        "id": str(uuid.uuid4()),
        "method": RPC_METHOD,
        "params": params,
    }


def parse_response(body: Any, request_id: str, endpoint: str = "") -> Dict[str, Any]:
    """Extract the node reply from a JSON-RPC response body."""
    if not isinstance(body, dict) or body.get("id") != request_id:
        raise TransportError("JSON-RPC response id does not match request", endpoint)
    if body.get("error") is not None:
        err = body["error"]
        detail = err.get("message") if isinstance(err, dict) else err
        raise TransportError(f"JSON-RPC error: {detail}", endpoint)
    result = body.get("result")
    reply = result.get("reply") if isinstance(result, dict) else None
    if not isinstance(reply, dict):
        raise TransportError("JSON-RPC result has no reply", endpoint)
    return reply


class RpcTransport:
    """aiohttp-backed transport; one session shared by all calls.

    The session is created lazily on first use (inside the running loop) or
    injected by the caller, in which case the caller owns closing it.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        config: Optional[DwnConfig] = None,
    ):
        self._session = session
        self._owns_session = session is None
        self.config = config or get_config()

    async def __aenter__(self) -> "RpcTransport":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=timeout_from_config(self.config))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send(self, endpoint: str, target: str, signed: SignedMessage) -> Dict[str, Any]:
        request = build_request(target, signed.message, signed.encoded_data)
        if signed.detached_data is None:
            post_kwargs: Dict[str, Any] = {"json": request}
        else:
            post_kwargs = {
                "data": signed.detached_data,
                "headers": {
                    DWN_REQUEST_HEADER: json.dumps(request, separators=(",", ":")),
                    "Content-Type": "application/octet-stream",
                },
            }
        logger.debug(
            f"POST {endpoint} {RPC_METHOD} id={request['id']} target={target} "
            f"detached={signed.detached_data is not None}"
        )
        session = self._get_session()
        try:
            async with session.post(endpoint, **post_kwargs) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise TransportError(f"HTTP {resp.status}: {text[:200]}", endpoint)
                try:
                    body = await resp.json(content_type=None)
                except ValueError as ex:
                    raise TransportError("Response is not valid JSON", endpoint) from ex
        except aiohttp.ClientError as ex:
            raise TransportError(f"Request failed: {ex}", endpoint) from ex
        except asyncio.TimeoutError as ex:
            raise TransportError("Request timed out", endpoint) from ex

        return parse_response(body, request["id"], endpoint)
