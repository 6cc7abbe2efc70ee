"""Message Builder: pure construction of signed DWN messages.

Every message is `{descriptor, authorization}` plus, for record writes,
`recordId`, `contextId`, and the optional `encryption` / `attestation`
envelopes. The builder stamps the mutable fields (timestamps, data CID and
size) and never alters caller-supplied immutable ones. Signing is delegated to
the key manager, which raises `AuthorizationError` when it holds no key for
the acting DID.

Validation happens here, before anything can be dispatched:
- unparseable structured data -> ValidationError
- empty or malformed identity fields -> ValidationError
- updates touching immutable descriptor fields -> ImmutablePropertyError
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from dwnclient.config import DwnConfig, get_config
from dwnclient.core import b64url_decode, b64url_encode, data_cid, now_timestamp, object_cid
from dwnclient.did import base_did, is_did
from dwnclient.errors import ImmutablePropertyError, ValidationError
from dwnclient.jws import decode_payload, sign_general_jws
from dwnclient.keys import KeyManager

logger = logging.getLogger(__name__)


class Interface(str, Enum):
    RECORDS = "Records"
    PROTOCOLS = "Protocols"


class Method(str, Enum):
    WRITE = "Write"
    READ = "Read"
    QUERY = "Query"
    DELETE = "Delete"
    CONFIGURE = "Configure"


# Fixed when a record is first written.
IMMUTABLE_PROPERTIES = (
    "schema",
    "protocol",
    "protocolPath",
    "dataFormat",
    "recipient",
    "parentId",
)
# Identity and creation fields; never accepted in an update either.
PERMANENT_PROPERTIES = ("recordId", "contextId", "dateCreated", "author")

UPDATABLE_PROPERTIES = ("data", "published", "datePublished")

RECORD_FILTER_PROPERTIES = frozenset({
    "recordId",
    "schema",
    "protocol",
    "protocolPath",
    "dataFormat",
    "contextId",
    "parentId",
    "recipient",
    "author",
    "published",
})
PROTOCOL_FILTER_PROPERTIES = frozenset({"protocol"})

DATE_SORTS = (
    "createdAscending",
    "createdDescending",
    "publishedAscending",
    "publishedDescending",
)


@dataclass(frozen=True)
class DataPayload:
    """A payload encoded to bytes together with its declared format."""
    data: bytes
    data_format: str

    @property
    def cid(self) -> str:
        return data_cid(self.data)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class SignedMessage:
    """A signed message plus the payload that travels with it.

    `encoded_data` (base64url) is set when the payload is at or below the
    inline threshold and travels inside the message call; larger payloads are
    kept only in `detached_data` and travel out of band.
    """
    message: Dict[str, Any]
    encoded_data: Optional[str] = None
    detached_data: Optional[bytes] = None

    @property
    def payload(self) -> Optional[bytes]:
        if self.detached_data is not None:
            return self.detached_data
        if self.encoded_data is not None:
            return b64url_decode(self.encoded_data)
        return None

    @property
    def descriptor(self) -> Dict[str, Any]:
        return self.message["descriptor"]

    @property
    def interface(self) -> str:
        return self.descriptor["interface"]

    @property
    def method(self) -> str:
        return self.descriptor["method"]

    @property
    def kind(self) -> str:
        return f"{self.interface}{self.method}"

    @property
    def record_id(self) -> Optional[str]:
        return self.message.get("recordId")

    @property
    def author(self) -> str:
        return message_author(self.message)

    @property
    def is_inline(self) -> bool:
        return self.encoded_data is not None


def attach_payload(message: Dict[str, Any], data: Optional[bytes], max_inline_size: int) -> SignedMessage:
    """Pair `message` with its payload, inline or detached by size."""
    if data is None:
        return SignedMessage(message)
    if len(data) <= max_inline_size:
        return SignedMessage(message, encoded_data=b64url_encode(data))
    return SignedMessage(message, detached_data=data)


def message_author(message: Mapping[str, Any]) -> str:
    """DID that signed the message's authorization (first signature)."""
    signatures = (message.get("authorization") or {}).get("signatures") or []
    if not signatures:
        return ""
    header = signatures[0].get("protected") or ""
    try:
        kid = json.loads(b64url_decode(header)).get("kid", "")
    except ValueError:
        return ""
    return base_did(kid)


def encode_data(
    data: Any,
    data_format: Optional[str] = None,
    config: Optional[DwnConfig] = None,
) -> DataPayload:
    """Encode raw bytes, text, or a structured value into a payload.

    Structured values are serialized with sorted keys and no insignificant
    whitespace. Anything that cannot be serialized raises ValidationError.
    """
    cfg = config or get_config()
    if isinstance(data, (bytes, bytearray, memoryview)):
        return DataPayload(bytes(data), data_format or cfg.data.default_bytes_format.get())
    if isinstance(data, str):
        return DataPayload(data.encode("utf-8"), data_format or cfg.data.default_text_format.get())
    if data is None:
        raise ValidationError("Record data is required")
    try:
        encoded = json.dumps(
            data,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as ex:
        raise ValidationError("Expected data to be parseable into a JSON object") from ex
    return DataPayload(encoded, data_format or cfg.data.default_json_format.get())


def _require_did(value: Optional[str], name: str) -> str:
    v = str(value or "").strip()
    if not v:
        raise ValidationError(f"{name} must be defined")
    if not is_did(v):
        raise ValidationError(f"{name} must be a DID, got {v!r}")
    return v


def _require_text(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value


def _check_filter(filter_: Optional[Mapping[str, Any]], allowed: Iterable[str]) -> Dict[str, Any]:
    out = dict(filter_ or {})
    unknown = sorted(set(out) - set(allowed))
    if unknown:
        raise ValidationError(f"Unsupported filter properties: {', '.join(unknown)}")
    for k, v in out.items():
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValidationError(f"Filter property {k} must not be empty")
    return out


def _content_cid(obj: Any, name: str) -> str:
    try:
        return object_cid(obj)
    except (TypeError, ValueError) as ex:
        raise ValidationError(f"{name} cannot be canonicalized: {ex}") from ex


def check_update_fields(fields: Mapping[str, Any]) -> None:
    """Reject updates that touch immutable or unknown properties."""
    for name in fields:
        if name in IMMUTABLE_PROPERTIES or name in PERMANENT_PROPERTIES:
            raise ImmutablePropertyError(name)
    unknown = sorted(set(fields) - set(UPDATABLE_PROPERTIES))
    if unknown:
        raise ValidationError(f"Unsupported update properties: {', '.join(unknown)}")


class MessageBuilder:
    """Builds and signs messages on behalf of DIDs held by a key manager."""

    def __init__(self, keys: KeyManager, config: Optional[DwnConfig] = None):
        self.keys = keys
        self.config = config or get_config()

    @property
    def max_inline_size(self) -> int:
        return int(self.config.data.max_inline_size.get())

    def _sign(
        self,
        author: str,
        descriptor: Dict[str, Any],
        **claims: Any,
    ) -> Dict[str, Any]:
        payload = {"descriptorCid": _content_cid(descriptor, "descriptor")}
        payload.update({k: v for k, v in claims.items() if v is not None})
        return sign_general_jws(payload, [self.keys.signer(author)])

    def _attach_data(self, message: Dict[str, Any], payload: DataPayload) -> SignedMessage:
        return attach_payload(message, payload.data, self.max_inline_size)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def records_write(
        self,
        author: str,
        data: Any,
        *,
        data_format: Optional[str] = None,
        schema: Optional[str] = None,
        protocol: Optional[str] = None,
        protocol_path: Optional[str] = None,
        recipient: Optional[str] = None,
        parent_id: Optional[str] = None,
        parent_context_id: Optional[str] = None,
        published: Optional[bool] = None,
        date_published: Optional[str] = None,
        encryption: Optional[Dict[str, Any]] = None,
        attesters: Sequence[str] = (),
    ) -> SignedMessage:
        """Build the initial write of a new record."""
        author = _require_did(author, "author")
        if recipient is not None:
            _require_did(recipient, "recipient")
        if (protocol is None) != (protocol_path is None):
            raise ValidationError("protocol and protocolPath must be given together")
        payload = encode_data(data, _require_text(data_format, "dataFormat"), self.config)

        timestamp = now_timestamp()
        descriptor: Dict[str, Any] = {
            "interface": Interface.RECORDS.value,
            "method": Method.WRITE.value,
            "dataFormat": payload.data_format,
            "dataCid": payload.cid,
            "dataSize": payload.size,
            "dateCreated": timestamp,
            "messageTimestamp": timestamp,
        }
        optional = {
            "schema": _require_text(schema, "schema"),
            "protocol": _require_text(protocol, "protocol"),
            "protocolPath": _require_text(protocol_path, "protocolPath"),
            "recipient": recipient,
            "parentId": _require_text(parent_id, "parentId"),
        }
        descriptor.update({k: v for k, v in optional.items() if v is not None})
        if published:
            descriptor["published"] = True
            descriptor["datePublished"] = date_published or timestamp

        record_id = object_cid({"descriptorCid": object_cid(descriptor), "author": author})
        context_id = None
        if protocol is not None:
            context_id = parent_context_id or record_id

        return self._finish_write(author, descriptor, record_id, context_id, encryption, attesters, payload)

    def records_write_update(
        self,
        previous: Mapping[str, Any],
        author: str,
        fields: Mapping[str, Any],
    ) -> SignedMessage:
        """Build a write that supersedes `previous` for the same record.

        `id` and `contextId` are carried over; `messageTimestamp` always moves
        forward; `dataCid`/`dataSize` change only when new data is given.
        """
        check_update_fields(fields)
        author = _require_did(author, "author")

        old = previous["descriptor"]
        descriptor = copy.deepcopy(dict(old))
        descriptor["messageTimestamp"] = now_timestamp(after=old.get("messageTimestamp"))

        payload: Optional[DataPayload] = None
        if "data" in fields:
            payload = encode_data(fields["data"], old["dataFormat"], self.config)
            descriptor["dataCid"] = payload.cid
            descriptor["dataSize"] = payload.size

        if "published" in fields:
            published = bool(fields["published"])
            if old.get("published") and not published:
                raise ImmutablePropertyError(
                    "published", "published cannot be changed from true to false"
                )
            if published:
                descriptor["published"] = True
                descriptor["datePublished"] = (
                    fields.get("datePublished")
                    or old.get("datePublished")
                    or descriptor["messageTimestamp"]
                )
        elif "datePublished" in fields:
            if not old.get("published"):
                raise ValidationError("datePublished requires published to be true")
            descriptor["datePublished"] = fields["datePublished"]

        return self._finish_write(
            author,
            descriptor,
            previous["recordId"],
            previous.get("contextId"),
            previous.get("encryption"),
            (),
            payload,
        )

    def _finish_write(
        self,
        author: str,
        descriptor: Dict[str, Any],
        record_id: str,
        context_id: Optional[str],
        encryption: Optional[Dict[str, Any]],
        attesters: Sequence[str],
        payload: Optional[DataPayload],
    ) -> SignedMessage:
        descriptor_cid = _content_cid(descriptor, "descriptor")
        message: Dict[str, Any] = {"recordId": record_id, "descriptor": descriptor}
        if context_id is not None:
            message["contextId"] = context_id

        attestation_cid = None
        if attesters:
            signers = [self.keys.signer(_require_did(did, "attester")) for did in attesters]
            message["attestation"] = sign_general_jws({"descriptorCid": descriptor_cid}, signers)
            attestation_cid = object_cid(decode_payload(message["attestation"]))

        encryption_cid = None
        if encryption is not None:
            if not isinstance(encryption, dict):
                raise ValidationError("encryption must be an object")
            message["encryption"] = copy.deepcopy(encryption)
            encryption_cid = _content_cid(message["encryption"], "encryption")

        message["authorization"] = self._sign(
            author,
            descriptor,
            recordId=record_id,
            contextId=context_id,
            attestationCid=attestation_cid,
            encryptionCid=encryption_cid,
        )
        logger.debug(f"Built RecordsWrite {record_id} ({descriptor['dataSize']} bytes)")
        if payload is None:
            return SignedMessage(message)
        return self._attach_data(message, payload)

    def records_read(self, author: str, filter: Mapping[str, Any]) -> SignedMessage:
        author = _require_did(author, "author")
        flt = _check_filter(filter, RECORD_FILTER_PROPERTIES)
        if not flt:
            raise ValidationError("RecordsRead requires a non-empty filter")
        descriptor = {
            "interface": Interface.RECORDS.value,
            "method": Method.READ.value,
            "filter": flt,
            "messageTimestamp": now_timestamp(),
        }
        return SignedMessage({"descriptor": descriptor, "authorization": self._sign(author, descriptor)})

    def records_query(
        self,
        author: str,
        filter: Optional[Mapping[str, Any]] = None,
        date_sort: Optional[str] = None,
    ) -> SignedMessage:
        author = _require_did(author, "author")
        descriptor: Dict[str, Any] = {
            "interface": Interface.RECORDS.value,
            "method": Method.QUERY.value,
            "filter": _check_filter(filter, RECORD_FILTER_PROPERTIES),
            "messageTimestamp": now_timestamp(),
        }
        if date_sort is not None:
            if date_sort not in DATE_SORTS:
                raise ValidationError(f"Unsupported dateSort: {date_sort!r}")
            descriptor["dateSort"] = date_sort
        return SignedMessage({"descriptor": descriptor, "authorization": self._sign(author, descriptor)})

    def records_delete(self, author: str, record_id: str) -> SignedMessage:
        author = _require_did(author, "author")
        descriptor = {
            "interface": Interface.RECORDS.value,
            "method": Method.DELETE.value,
            "recordId": _require_text(record_id, "recordId"),
            "messageTimestamp": now_timestamp(),
        }
        if descriptor["recordId"] is None:
            raise ValidationError("recordId must be defined")
        return SignedMessage({"descriptor": descriptor, "authorization": self._sign(author, descriptor)})

    # ------------------------------------------------------------------
    # Protocols
    # ------------------------------------------------------------------

    def protocols_configure(self, author: str, definition: Mapping[str, Any]) -> SignedMessage:
        """Wrap a protocol definition; its internal structure is not checked."""
        author = _require_did(author, "author")
        if not isinstance(definition, Mapping):
            raise ValidationError("Protocol definition must be an object")
        _require_text(definition.get("protocol"), "definition.protocol")
        if definition.get("protocol") is None:
            raise ValidationError("definition.protocol must be defined")
        descriptor = {
            "interface": Interface.PROTOCOLS.value,
            "method": Method.CONFIGURE.value,
            "definition": copy.deepcopy(dict(definition)),
            "messageTimestamp": now_timestamp(),
        }
        return SignedMessage({"descriptor": descriptor, "authorization": self._sign(author, descriptor)})

    def protocols_query(self, author: str, filter: Optional[Mapping[str, Any]] = None) -> SignedMessage:
        author = _require_did(author, "author")
        descriptor: Dict[str, Any] = {
            "interface": Interface.PROTOCOLS.value,
            "method": Method.QUERY.value,
            "messageTimestamp": now_timestamp(),
        }
        flt = _check_filter(filter, PROTOCOL_FILTER_PROPERTIES)
        if flt:
            descriptor["filter"] = flt
        return SignedMessage({"descriptor": descriptor, "authorization": self._sign(author, descriptor)})
