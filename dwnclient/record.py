"""Record: the client-side handle to one logical record.

A handle carries the record's identity (`id`, `context_id`), a snapshot of its
latest descriptor, where it was obtained from, and a `DataResolver` over its
payload. Mutation goes through `update`, which replaces the snapshot in place
once the target accepts it; `delete` is terminal for the handle.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from dwnclient.core import b64url_decode, data_cid
from dwnclient.data import DataResolver
from dwnclient.dispatch import LOCAL, Remote, Status, Target
from dwnclient.errors import AuthorizationError, NotFoundError, OperationError, TransportError
from dwnclient.messages import attach_payload, message_author
from dwnclient.observability import request_scope
from dwnclient.schema import validate_reply_entry

if TYPE_CHECKING:
    from dwnclient.agent import Agent

logger = logging.getLogger(__name__)

# Descriptor fields exposed by `to_json`, in output order.
DESCRIPTOR_FIELDS = (
    "interface",
    "method",
    "protocol",
    "protocolPath",
    "recipient",
    "schema",
    "parentId",
    "dataCid",
    "dataSize",
    "dateCreated",
    "messageTimestamp",
    "published",
    "datePublished",
    "dataFormat",
)


@dataclass
class StatusResponse:
    status: Status


class Record:
    """Handle to one record as seen by `connected_did`.

    `origin` is where the handle was obtained; lazy payload fetches, updates
    and deletes go back there. A handle built from a `store=False` write keeps
    its updates local to the handle.
    """

    def __init__(
        self,
        agent: "Agent",
        connected_did: str,
        message: Dict[str, Any],
        *,
        origin: Target = LOCAL,
        data: Optional[bytes] = None,
        stored: bool = True,
    ):
        self._agent = agent
        self._connected_did = connected_did
        self._message = copy.deepcopy(message)
        self._message.pop("encodedData", None)
        self._origin = origin
        self._stored = stored
        self._deleted = False
        self._author = message_author(self._message)
        descriptor = self._message["descriptor"]
        self.data = DataResolver(
            descriptor["dataCid"],
            descriptor["dataSize"],
            data=data,
            fetch=self._fetch_data,
        )

    @classmethod
    def from_entry(
        cls,
        agent: "Agent",
        connected_did: str,
        entry: Dict[str, Any],
        origin: Target,
    ) -> "Record":
        """Build a handle from a read/query reply entry.

        Entries that are not record writes, and inline payloads that do not
        match the entry's dataCid/dataSize, raise TransportError.
        """
        errors = validate_reply_entry(entry, "recordEntry")
        if errors:
            raise TransportError(f"Malformed record entry from {origin}: {errors[0]}")
        data = None
        if entry.get("encodedData") is not None:
            descriptor = entry["descriptor"]
            try:
                data = b64url_decode(entry["encodedData"])
            except ValueError as ex:
                raise TransportError(f"Undecodable payload for record {entry['recordId']}") from ex
            if data_cid(data) != descriptor["dataCid"] or len(data) != descriptor["dataSize"]:
                raise TransportError(
                    f"Payload for record {entry['recordId']} does not match dataCid {descriptor['dataCid']}"
                )
        return cls(agent, connected_did, entry, origin=origin, data=data)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def _descriptor(self) -> Dict[str, Any]:
        return self._message["descriptor"]

    @property
    def id(self) -> str:
        return self._message["recordId"]

    @property
    def context_id(self) -> Optional[str]:
        return self._message.get("contextId")

    @property
    def author(self) -> str:
        return self._author

    @property
    def target(self) -> str:
        """DID whose store holds the record."""
        if isinstance(self._origin, Remote):
            return self._origin.did
        return self._connected_did

    @property
    def origin(self) -> Target:
        return self._origin

    @property
    def stored(self) -> bool:
        return self._stored

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def interface(self) -> str:
        return self._descriptor["interface"]

    @property
    def method(self) -> str:
        return self._descriptor["method"]

    @property
    def protocol(self) -> Optional[str]:
        return self._descriptor.get("protocol")

    @property
    def protocol_path(self) -> Optional[str]:
        return self._descriptor.get("protocolPath")

    @property
    def schema(self) -> Optional[str]:
        return self._descriptor.get("schema")

    @property
    def recipient(self) -> Optional[str]:
        return self._descriptor.get("recipient")

    @property
    def parent_id(self) -> Optional[str]:
        return self._descriptor.get("parentId")

    @property
    def data_format(self) -> str:
        return self._descriptor["dataFormat"]

    @property
    def data_cid(self) -> str:
        return self._descriptor["dataCid"]

    @property
    def data_size(self) -> int:
        return self._descriptor["dataSize"]

    @property
    def date_created(self) -> str:
        return self._descriptor["dateCreated"]

    @property
    def date_modified(self) -> str:
        return self._descriptor["messageTimestamp"]

    @property
    def published(self) -> bool:
        return bool(self._descriptor.get("published", False))

    @property
    def date_published(self) -> Optional[str]:
        return self._descriptor.get("datePublished")

    @property
    def encryption(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._message.get("encryption"))

    @property
    def attestation(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._message.get("attestation"))

    @property
    def message(self) -> Dict[str, Any]:
        """A copy of the latest signed RecordsWrite."""
        return copy.deepcopy(self._message)

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "author": self.author,
            "target": self.target,
            "recordId": self.id,
        }
        if self.context_id is not None:
            out["contextId"] = self.context_id
        for name in DESCRIPTOR_FIELDS:
            if name in self._descriptor:
                out[name] = copy.deepcopy(self._descriptor[name])
        out.setdefault("published", False)
        if "encryption" in self._message:
            out["encryption"] = self.encryption
        if "attestation" in self._message:
            out["attestation"] = self.attestation
        return out

    def __repr__(self) -> str:
        return f"Record(id={self.id!r}, author={self.author!r}, target={self.target!r})"

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _ensure_live(self, operation: str) -> None:
        if self._deleted:
            raise OperationError(f"cannot {operation} record {self.id}; it has been deleted")

    async def _fetch_data(self) -> bytes:
        signed = self._agent.builder.records_read(self._connected_did, {"recordId": self.id})
        reply = await self._agent.router.dispatch(self._origin, self._connected_did, signed)
        code = reply.status.code
        if code == 404:
            raise NotFoundError(f"Record {self.id} not found at {self._origin}")
        if code == 401:
            raise AuthorizationError(f"Not authorized to read record {self.id}: {reply.status.detail}")
        if code != 200 or not reply.record or reply.record.get("encodedData") is None:
            raise TransportError(f"Unexpected RecordsRead reply {code}: {reply.status.detail}")
        data = b64url_decode(str(reply.record["encodedData"]))
        if data_cid(data) != self.data.cid:
            raise TransportError(f"Payload for record {self.id} does not match dataCid {self.data.cid}")
        return data

    async def update(self, **fields: Any) -> StatusResponse:
        """Write a new version of the record with the same id and contextId.

        Only `data`, `published` and `datePublished` may be given; any
        immutable property raises ImmutablePropertyError before dispatch.
        """
        self._ensure_live("update")
        signed = self._agent.builder.records_write_update(self._message, self.author, fields)

        with request_scope():
            if self._stored or isinstance(self._origin, Remote):
                reply = await self._agent.router.dispatch(self._origin, self._connected_did, signed)
                status = reply.status
            else:
                status = Status(202, "Accepted")

        if status.ok:
            self._message = signed.message
            if signed.payload is not None:
                self.data.reset(signed.descriptor["dataCid"], signed.descriptor["dataSize"], signed.payload)
            logger.info(f"Updated record {self.id} at {self._origin}: {status.code}")
        return StatusResponse(status)

    async def delete(self) -> StatusResponse:
        """Delete the record where it was obtained from; terminal for this handle."""
        self._ensure_live("delete")
        signed = self._agent.builder.records_delete(self._connected_did, self.id)
        with request_scope():
            reply = await self._agent.router.dispatch(self._origin, self._connected_did, signed)
        if reply.status.ok:
            self._deleted = True
            logger.info(f"Deleted record {self.id} at {self._origin}")
        return StatusResponse(reply.status)

    async def send(self, target: str) -> StatusResponse:
        """Replicate the record's current state to `target`'s store.

        Local persistence state is untouched.
        """
        self._ensure_live("send")
        data = await self.data.bytes()
        signed = attach_payload(self.message, data, self._agent.builder.max_inline_size)
        with request_scope():
            reply = await self._agent.router.dispatch(Remote(target), self._connected_did, signed)
        logger.info(f"Sent record {self.id} to {target}: {reply.status.code}")
        return StatusResponse(reply.status)
