"""Dispatcher/Router: deliver a signed message to a target and map the reply.

A target is either the agent's own store (`LOCAL`) or the node of some DID
(`Remote(did)`). Remote DIDs are resolved to their DWN service endpoints and
the message is sent over the transport registered for the endpoint's scheme.

Replies are mapped to a status-coded `Reply`:
- 200 success with body, 202 accepted
- 401 authorization failed, 404 not found (body treated as absent)
- other node-defined codes (400, 409, ...) are passed through unchanged

Transport failures and malformed replies raise `TransportError`; they are never
folded into one of the codes above.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union
from urllib.parse import urlsplit

from dwnclient.did import DidResolver
from dwnclient.errors import NotFoundError, TransportError
from dwnclient.messages import SignedMessage
from dwnclient.schema import validate_reply

logger = logging.getLogger(__name__)

STATUS_DETAILS = {
    200: "OK",
    202: "Accepted",
    401: "Unauthorized",
    404: "Not Found",
}


@dataclass(frozen=True)
class Local:
    """The agent-managed store of the acting DID."""

    def __str__(self) -> str:
        return "local"


@dataclass(frozen=True)
class Remote:
    """The node that hosts `did`'s store."""
    did: str

    def __str__(self) -> str:
        return self.did


Target = Union[Local, Remote]
LOCAL = Local()


def target_from(from_did: Optional[str]) -> Target:
    """`from`/`to` request option to a target; absent means local."""
    return Remote(from_did) if from_did else LOCAL


@dataclass(frozen=True)
class Status:
    code: int
    detail: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.code < 300

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "detail": self.detail}


@dataclass
class Reply:
    status: Status
    entries: List[Dict[str, Any]] = field(default_factory=list)
    record: Optional[Dict[str, Any]] = None


class LocalStore(Protocol):
    async def process_message(
        self,
        tenant: str,
        message: Dict[str, Any],
        data: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        ...


class Transport(Protocol):
    """Delivers one signed message to an endpoint and returns the raw reply.

    `signed.encoded_data` goes inside the message call; `signed.detached_data`
    goes as a separate body part.
    """

    async def send(self, endpoint: str, target: str, signed: SignedMessage) -> Dict[str, Any]:
        ...


def map_reply(raw: Any, endpoint: str = "") -> Reply:
    """Map a raw node reply to a `Reply`; malformed replies raise TransportError."""
    errors = validate_reply(raw)
    if errors:
        raise TransportError(f"Malformed reply: {errors[0]}", endpoint)

    code = int(raw["status"]["code"])
    detail = str(raw["status"].get("detail") or "")
    if code == 403:
        code = 401
    elif code == 410:
        code = 404
    elif code == 204:
        code = 202
    status = Status(code, detail or STATUS_DETAILS.get(code, ""))

    if code in (401, 404):
        return Reply(status)
    return Reply(status, entries=list(raw.get("entries") or []), record=raw.get("record"))


class Router:
    """Resolve targets and deliver messages; performs no retries."""

    def __init__(
        self,
        local: LocalStore,
        resolver: DidResolver,
        transports: Optional[Mapping[str, Transport]] = None,
    ):
        self.local = local
        self.resolver = resolver
        self.transports: Dict[str, Transport] = {}
        for scheme, transport in (transports or {}).items():
            self.register_transport(scheme, transport)

    def register_transport(self, scheme: str, transport: Transport) -> None:
        self.transports[scheme.lower()] = transport

    def endpoints(self, did: str) -> List[str]:
        try:
            resolution = self.resolver.resolve(did)
        except NotFoundError as ex:
            raise TransportError(f"Cannot route to {did}: {ex}") from ex
        if not resolution.service_endpoints:
            raise TransportError(f"No DWN service endpoints for {did}")
        return resolution.service_endpoints

    def _transport_for(self, endpoint: str) -> Transport:
        scheme = urlsplit(endpoint).scheme.lower()
        transport = self.transports.get(scheme)
        if transport is None:
            raise TransportError(f"No transport registered for scheme {scheme!r}", endpoint)
        return transport

    async def dispatch(self, target: Target, tenant: str, signed: SignedMessage) -> Reply:
        """Send `signed` to `target`.

        `tenant` is the acting DID; for the local store it selects whose
        partition of the agent store the message lands in.
        """
        if isinstance(target, Remote):
            reply = await self._dispatch_remote(target.did, signed)
        else:
            raw = await self.local.process_message(tenant, signed.message, signed.payload)
            reply = map_reply(raw, "local")

        logger.debug(
            f"{signed.kind} -> {target}: {reply.status.code} {reply.status.detail}",
            extra={"operation": signed.kind, "target": str(target), "status": reply.status.code},
        )
        return reply

    async def _dispatch_remote(self, did: str, signed: SignedMessage) -> Reply:
        last_error: Optional[TransportError] = None
        for endpoint in self.endpoints(did):
            try:
                transport = self._transport_for(endpoint)
                raw = await transport.send(endpoint, did, signed)
                return map_reply(raw, endpoint)
            except TransportError as ex:
                logger.warning(
                    f"{signed.kind} to {did} via {endpoint} failed: {ex}",
                    extra={"operation": signed.kind, "target": did},
                )
                last_error = ex
        if last_error is None:
            raise TransportError(f"No DWN service endpoints for {did}")
        raise last_error
