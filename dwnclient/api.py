"""
Records/Protocols facade.

`DwnApi` binds an `Agent` to one connected DID and exposes the request
surface as two namespaces:

    api = DwnApi.connect(agent)
    response = await api.records.write("Hello, world!", message={"schema": "foo/bar"})
    response.status.code    # 202
    response.record.id

Every dispatching call returns a response object carrying a `Status`.
Protocol-level outcomes (401, 404, 409, ...) are read from that status; only
construction errors, lifecycle misuse and transport failures are raised.
Requests accept:

- `store`: persist in the agent store (default true). With `store=False` the
  handle is still returned and fully usable; nothing is persisted locally.
- `from_did`: read/query/delete against that DID's node instead of the agent
  store.
- `message`: descriptor fields in wire spelling (`dataFormat`, `schema`, ...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from dwnclient.agent import Agent
from dwnclient.dispatch import LOCAL, Status, Target, target_from
from dwnclient.errors import ValidationError
from dwnclient.observability import request_scope
from dwnclient.protocol import Protocol
from dwnclient.record import Record

logger = logging.getLogger(__name__)

# Wire spelling -> MessageBuilder.records_write keyword.
WRITE_MESSAGE_FIELDS = {
    "dataFormat": "data_format",
    "schema": "schema",
    "protocol": "protocol",
    "protocolPath": "protocol_path",
    "recipient": "recipient",
    "parentId": "parent_id",
    "contextId": "parent_context_id",
    "published": "published",
    "datePublished": "date_published",
}

# Copied from the base record by `create_from`.
INHERITED_FIELDS = ("schema", "protocol", "protocolPath", "recipient", "contextId")


@dataclass
class RecordResponse:
    status: Status
    record: Optional[Record] = None


@dataclass
class RecordsResponse:
    status: Status
    records: List[Record] = field(default_factory=list)


@dataclass
class DeleteResponse:
    status: Status


@dataclass
class ProtocolResponse:
    status: Status
    protocol: Optional[Protocol] = None


@dataclass
class ProtocolsResponse:
    status: Status
    protocols: List[Protocol] = field(default_factory=list)


def _write_kwargs(message: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    message = dict(message or {})
    unknown = sorted(set(message) - set(WRITE_MESSAGE_FIELDS))
    if unknown:
        raise ValidationError(f"Unsupported message properties: {', '.join(unknown)}")
    return {WRITE_MESSAGE_FIELDS[k]: v for k, v in message.items()}


class RecordsApi:
    def __init__(self, agent: Agent, connected_did: str):
        self._agent = agent
        self._connected_did = connected_did

    async def write(
        self,
        data: Any,
        *,
        message: Optional[Mapping[str, Any]] = None,
        store: bool = True,
        author: Optional[str] = None,
        encryption: Optional[Dict[str, Any]] = None,
        attesters: Sequence[str] = (),
    ) -> RecordResponse:
        """Write a new record into the connected DID's store.

        `author` defaults to the connected DID; it must be a DID whose key the
        agent holds.
        """
        signed = self._agent.builder.records_write(
            author or self._connected_did,
            data,
            encryption=encryption,
            attesters=attesters,
            **_write_kwargs(message),
        )
        with request_scope():
            if store:
                reply = await self._agent.router.dispatch(LOCAL, self._connected_did, signed)
                status = reply.status
            else:
                status = Status(202, "Accepted")
            logger.info(f"RecordsWrite {signed.record_id}: {status.code} (store={store})")

        if not status.ok:
            return RecordResponse(status)
        record = Record(
            self._agent,
            self._connected_did,
            signed.message,
            origin=LOCAL,
            data=signed.payload,
            stored=store,
        )
        return RecordResponse(status, record)

    async def create(self, data: Any, **options: Any) -> RecordResponse:
        return await self.write(data, **options)

    async def create_from(
        self,
        base: Record,
        *,
        data: Any = None,
        author: Optional[str] = None,
        message: Optional[Mapping[str, Any]] = None,
        store: bool = True,
    ) -> RecordResponse:
        """Write a new child record inheriting the base record's descriptor.

        `parentId` is set to the base's id and `contextId` carried over.
        Without `data` the base's payload and `dataFormat` are reused.
        """
        inherited: Dict[str, Any] = {}
        base_json = base.to_json()
        for name in INHERITED_FIELDS:
            if base_json.get(name) is not None:
                inherited[name] = base_json[name]
        inherited["parentId"] = base.id
        if data is None:
            data = await base.data.bytes()
            inherited["dataFormat"] = base.data_format
        inherited.update(message or {})
        return await self.write(data, message=inherited, store=store, author=author)

    async def read(self, filter: Mapping[str, Any], *, from_did: Optional[str] = None) -> RecordResponse:
        """Read one record by filter (typically `recordId`)."""
        target = target_from(from_did)
        signed = self._agent.builder.records_read(self._connected_did, filter)
        with request_scope():
            reply = await self._agent.router.dispatch(target, self._connected_did, signed)
            logger.info(f"RecordsRead from {target}: {reply.status.code}")
        if reply.status.code != 200 or reply.record is None:
            return RecordResponse(reply.status)
        return RecordResponse(reply.status, self._record(reply.record, target))

    async def query(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        *,
        date_sort: Optional[str] = None,
        from_did: Optional[str] = None,
    ) -> RecordsResponse:
        target = target_from(from_did)
        signed = self._agent.builder.records_query(self._connected_did, filter, date_sort)
        with request_scope():
            reply = await self._agent.router.dispatch(target, self._connected_did, signed)
            logger.info(f"RecordsQuery at {target}: {reply.status.code}, {len(reply.entries)} entries")
        if not reply.status.ok:
            return RecordsResponse(reply.status)
        return RecordsResponse(reply.status, [self._record(e, target) for e in reply.entries])

    async def delete(self, record_id: str, *, from_did: Optional[str] = None) -> DeleteResponse:
        target = target_from(from_did)
        signed = self._agent.builder.records_delete(self._connected_did, record_id)
        with request_scope():
            reply = await self._agent.router.dispatch(target, self._connected_did, signed)
            logger.info(f"RecordsDelete {record_id} at {target}: {reply.status.code}")
        return DeleteResponse(reply.status)

    def _record(self, entry: Dict[str, Any], target: Target) -> Record:
        return Record.from_entry(self._agent, self._connected_did, entry, target)


class ProtocolsApi:
    def __init__(self, agent: Agent, connected_did: str):
        self._agent = agent
        self._connected_did = connected_did

    async def configure(self, definition: Mapping[str, Any]) -> ProtocolResponse:
        """Install a protocol definition in the connected DID's store."""
        signed = self._agent.builder.protocols_configure(self._connected_did, definition)
        with request_scope():
            reply = await self._agent.router.dispatch(LOCAL, self._connected_did, signed)
            logger.info(f"ProtocolsConfigure {definition.get('protocol')}: {reply.status.code}")
        if not reply.status.ok:
            return ProtocolResponse(reply.status)
        return ProtocolResponse(reply.status, Protocol(self._agent, self._connected_did, signed.message))

    async def query(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        *,
        from_did: Optional[str] = None,
    ) -> ProtocolsResponse:
        target = target_from(from_did)
        signed = self._agent.builder.protocols_query(self._connected_did, filter)
        with request_scope():
            reply = await self._agent.router.dispatch(target, self._connected_did, signed)
            logger.info(f"ProtocolsQuery at {target}: {reply.status.code}")
        if not reply.status.ok:
            return ProtocolsResponse(reply.status)
        return ProtocolsResponse(
            reply.status,
            [Protocol.from_entry(self._agent, self._connected_did, e) for e in reply.entries],
        )


class DwnApi:
    """Facade over an agent for one connected DID."""

    def __init__(self, agent: Agent, connected_did: str):
        self.agent = agent
        self.connected_did = connected_did
        self.records = RecordsApi(agent, connected_did)
        self.protocols = ProtocolsApi(agent, connected_did)

    @classmethod
    def connect(cls, agent: Optional[Agent] = None, dwn_endpoints: Iterable[str] = ()) -> "DwnApi":
        """Create a fresh identity on `agent` (or a new one) and bind to it."""
        agent = agent or Agent()
        return cls(agent, agent.create_identity(dwn_endpoints))
