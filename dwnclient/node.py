"""In-process, memory-backed DWN node.

Serves as the agent's local store (one partition per tenant DID) and, behind
`MemoryTransport`, as a loopback remote node. It honours the client contract:
signed messages in, status-coded replies out. Its authorization rules are the
minimal tenancy model the client relies on, not a full permission engine:

- the tenant may do everything in its own partition
- a non-tenant may write records under a protocol configured by the tenant
- a non-tenant may read records it authored, received, or that are published
- a non-tenant may delete records it authored
- everything else from a non-tenant is 401

Deleted record ids are tombstoned; later reads, queries and writes for them
see nothing.
"""

from __future__ import annotations

import binascii
import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set, Tuple

from dwnclient.config import DwnConfig, get_config
from dwnclient.core import b64url_decode, b64url_encode, data_cid, object_cid
from dwnclient.errors import AuthorizationError, TransportError
from dwnclient.jws import decode_payload, verify_general_jws
from dwnclient.messages import SignedMessage
from dwnclient.rpc import RPC_METHOD, build_request, parse_response
from dwnclient.schema import validate_message

logger = logging.getLogger(__name__)

WRITE_IMMUTABLE_FIELDS = (
    "dateCreated",
    "schema",
    "protocol",
    "protocolPath",
    "dataFormat",
    "recipient",
    "parentId",
)

SORT_KEYS: Dict[str, Tuple[str, bool]] = {
    "createdAscending": ("dateCreated", False),
    "createdDescending": ("dateCreated", True),
    "publishedAscending": ("datePublished", False),
    "publishedDescending": ("datePublished", True),
}


def _reply(code: int, detail: str, **body: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {"status": {"code": code, "detail": detail}}
    out.update(body)
    return out


@dataclass
class StoredRecord:
    initial: Dict[str, Any]
    latest: Dict[str, Any]
    author: str
    data: bytes

    @property
    def descriptor(self) -> Dict[str, Any]:
        return self.latest["descriptor"]


@dataclass
class TenantStore:
    records: Dict[str, StoredRecord] = field(default_factory=dict)
    tombstones: Set[str] = field(default_factory=set)
    protocols: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class MemoryNode:
    """Multi-tenant message store keyed by tenant DID."""

    def __init__(self, config: Optional[DwnConfig] = None):
        self.config = config or get_config()
        self._tenants: Dict[str, TenantStore] = {}
        self.processed = 0

    def clear(self) -> None:
        self._tenants.clear()
        self.processed = 0

    def _tenant(self, did: str) -> TenantStore:
        return self._tenants.setdefault(did, TenantStore())

    async def process_message(
        self,
        tenant: str,
        message: Dict[str, Any],
        data: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        self.processed += 1
        errors = validate_message(message)
        if errors:
            return _reply(400, f"Invalid message: {errors[0]}")

        descriptor = message["descriptor"]
        kind = f"{descriptor['interface']}{descriptor['method']}"
        try:
            signers = verify_general_jws(message["authorization"])
            claims = decode_payload(message["authorization"])
        except AuthorizationError as ex:
            return _reply(401, f"{kind} message failed authentication: {ex}")
        if claims.get("descriptorCid") != object_cid(descriptor):
            return _reply(401, f"{kind} message failed authentication: descriptorCid mismatch")

        handler = self._handlers().get(kind)
        if handler is None:
            return _reply(400, f"Unsupported message type: {kind}")
        reply = handler(self._tenant(tenant), tenant, signers[0], message, claims, data)
        logger.debug(f"{kind} for {tenant} from {signers[0]}: {reply['status']['code']}")
        return reply

    def _handlers(self) -> Dict[str, Callable[..., Dict[str, Any]]]:
        return {
            "RecordsWrite": self._records_write,
            "RecordsRead": self._records_read,
            "RecordsQuery": self._records_query,
            "RecordsDelete": self._records_delete,
            "ProtocolsConfigure": self._protocols_configure,
            "ProtocolsQuery": self._protocols_query,
        }

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _records_write(self, store, tenant, author, message, claims, data):
        descriptor = message["descriptor"]
        record_id = message["recordId"]
        if claims.get("recordId") != record_id or claims.get("contextId") != message.get("contextId"):
            return _reply(401, "RecordsWrite message failed authentication: signed ids do not match")
        if record_id in store.tombstones:
            return _reply(404, f"Record {record_id} has been deleted")

        if author != tenant:
            protocol = descriptor.get("protocol")
            if not protocol or protocol not in store.protocols:
                return _reply(401, "RecordsWrite message failed authorization")

        existing = store.records.get(record_id)
        if data is None:
            if existing is None or existing.descriptor["dataCid"] != descriptor["dataCid"]:
                return _reply(400, "RecordsWrite is missing its data")
            data = existing.data
        if data_cid(data) != descriptor["dataCid"] or len(data) != descriptor["dataSize"]:
            return _reply(400, "RecordsWrite data does not match dataCid/dataSize")

        if existing is None:
            store.records[record_id] = StoredRecord(
                initial=copy.deepcopy(message),
                latest=copy.deepcopy(message),
                author=author,
                data=data,
            )
            return _reply(202, "Accepted")

        if author != existing.author and author != tenant:
            return _reply(401, "RecordsWrite message failed authorization")
        for name in WRITE_IMMUTABLE_FIELDS:
            if descriptor.get(name) != existing.initial["descriptor"].get(name):
                return _reply(400, f"RecordsWrite cannot change immutable property {name}")

        current = existing.descriptor["messageTimestamp"]
        if descriptor["messageTimestamp"] < current:
            return _reply(409, "Conflict: a newer RecordsWrite exists")
        if descriptor["messageTimestamp"] == current:
            if object_cid(message) == object_cid(existing.latest):
                return _reply(202, "Accepted")
            return _reply(409, "Conflict: a different RecordsWrite has the same timestamp")
        existing.latest = copy.deepcopy(message)
        existing.data = data
        return _reply(202, "Accepted")

    def _can_read(self, tenant: str, requester: str, record: StoredRecord) -> bool:
        d = record.descriptor
        return (
            requester == tenant
            or requester == record.author
            or requester == d.get("recipient")
            or bool(d.get("published"))
        )

    def _matches(self, record: StoredRecord, filter_: Dict[str, Any]) -> bool:
        for key, value in filter_.items():
            if key in ("recordId", "contextId"):
                actual = record.latest.get(key)
            elif key == "author":
                actual = record.author
            elif key == "published":
                actual = bool(record.descriptor.get("published"))
            else:
                actual = record.descriptor.get(key)
            if actual != value:
                return False
        return True

    def _entry(self, record: StoredRecord, inline: bool) -> Dict[str, Any]:
        entry = copy.deepcopy(record.latest)
        if inline:
            entry["encodedData"] = b64url_encode(record.data)
        return entry

    def _records_read(self, store, tenant, author, message, claims, data):
        filter_ = message["descriptor"]["filter"]
        found = [r for r in store.records.values() if self._matches(r, filter_)]
        if not found:
            return _reply(404, "Not Found")
        record = found[0]
        if not self._can_read(tenant, author, record):
            return _reply(401, "RecordsRead message failed authorization")
        return _reply(200, "OK", record=self._entry(record, inline=True))

    def _records_query(self, store, tenant, author, message, claims, data):
        if author != tenant:
            return _reply(401, "RecordsQuery message failed authorization")
        descriptor = message["descriptor"]
        sort_field, reverse = SORT_KEYS[descriptor.get("dateSort") or "createdAscending"]
        matches = [r for r in store.records.values() if self._matches(r, descriptor["filter"])]
        matches.sort(key=lambda r: (r.descriptor.get(sort_field) or "", r.latest["recordId"]), reverse=reverse)
        limit = int(self.config.data.max_inline_size.get())
        entries = [self._entry(r, inline=r.descriptor["dataSize"] <= limit) for r in matches]
        return _reply(200, "OK", entries=entries)

    def _records_delete(self, store, tenant, author, message, claims, data):
        record_id = message["descriptor"]["recordId"]
        record = store.records.get(record_id)
        if record is None:
            if author != tenant:
                return _reply(401, "RecordsDelete message failed authorization")
            return _reply(404, "Not Found")
        if author != tenant and author != record.author:
            return _reply(401, "RecordsDelete message failed authorization")
        del store.records[record_id]
        store.tombstones.add(record_id)
        return _reply(202, "Accepted")

    # ------------------------------------------------------------------
    # Protocols
    # ------------------------------------------------------------------

    def _protocols_configure(self, store, tenant, author, message, claims, data):
        if author != tenant:
            return _reply(401, "ProtocolsConfigure message failed authorization")
        descriptor = message["descriptor"]
        uri = descriptor["definition"]["protocol"]
        existing = store.protocols.get(uri)
        if existing is not None and existing["descriptor"]["messageTimestamp"] > descriptor["messageTimestamp"]:
            return _reply(409, "Conflict: a newer ProtocolsConfigure exists")
        store.protocols[uri] = copy.deepcopy(message)
        return _reply(202, "Accepted")

    def _protocols_query(self, store, tenant, author, message, claims, data):
        if author != tenant:
            return _reply(401, "ProtocolsQuery message failed authorization")
        wanted = (message["descriptor"].get("filter") or {}).get("protocol")
        entries = [
            copy.deepcopy(m)
            for uri, m in sorted(store.protocols.items())
            if wanted is None or uri == wanted
        ]
        return _reply(200, "OK", entries=entries)

    # ------------------------------------------------------------------
    # JSON-RPC front
    # ------------------------------------------------------------------

    async def handle_json_rpc(self, body: Any, detached: Optional[bytes] = None) -> Dict[str, Any]:
        """Answer one JSON-RPC request (as served over HTTP).

        `detached` is an out-of-band payload sent beside the call; a request
        may carry either it or `params.encodedData`, not both.
        """
        request_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(body, dict) or body.get("method") != RPC_METHOD:
            return {"jsonrpc": "2.0", "id": request_id, "error": {"code": -32601, "message": "Method not found"}}
        params = body.get("params") or {}
        target = params.get("target")
        message = params.get("message")
        if not isinstance(target, str) or not isinstance(message, dict):
            return {"jsonrpc": "2.0", "id": request_id, "error": {"code": -32602, "message": "Invalid params"}}
        data = detached
        if params.get("encodedData") is not None:
            if detached is not None:
                return {"jsonrpc": "2.0", "id": request_id, "error": {"code": -32602, "message": "Payload given twice"}}
            try:
                data = b64url_decode(str(params["encodedData"]))
            except (ValueError, binascii.Error):
                return {"jsonrpc": "2.0", "id": request_id, "error": {"code": -32602, "message": "Invalid encodedData"}}
        reply = await self.process_message(target, message, data)
        return {"jsonrpc": "2.0", "id": request_id, "result": {"reply": reply}}


class MemoryTransport:
    """Loopback transport routing `memory://` endpoints to in-process nodes.

    Requests and responses are serialized to JSON and back so that nothing is
    shared by reference between client and node.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, MemoryNode] = {}
        self.detached_sent = 0

    def mount(self, endpoint: str, node: MemoryNode) -> None:
        self._nodes[endpoint.rstrip("/")] = node

    def unmount(self, endpoint: str) -> None:
        self._nodes.pop(endpoint.rstrip("/"), None)

    async def send(self, endpoint: str, target: str, signed: SignedMessage) -> Dict[str, Any]:
        node = self._nodes.get(endpoint.rstrip("/"))
        if node is None:
            raise TransportError("Endpoint unreachable", endpoint)
        request = build_request(target, signed.message, signed.encoded_data)
        detached = None
        if signed.detached_data is not None:
            detached = bytes(signed.detached_data)
            self.detached_sent += 1
        response = await node.handle_json_rpc(json.loads(json.dumps(request)), detached)
        return parse_response(json.loads(json.dumps(response)), request["id"], endpoint)
