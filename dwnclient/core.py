"""Core primitives for the DWN client.

This module provides the foundational utilities used throughout the package:
- SHA-256 content hashing
- Canonical JSON serialization (JCS/RFC8785 subset)
- Content identifiers (CIDv1, base32 multibase)
- base64url helpers and protocol timestamps

Design principles:
- Pure functions where possible
- No global mutable state
- Explicit error handling
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import pathlib
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import yaml

# Multicodec identifiers used in CIDs
RAW_CODEC = b"\x55"
DAG_JSON_CODEC = b"\xa9\x02"  # 0x0129 as unsigned varint
SHA2_256_MULTIHASH = b"\x12\x20"
CID_V1 = b"\x01"

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def load_yaml(path: pathlib.Path) -> Any:
    """Load YAML file with UTF-8 encoding."""
    return yaml.safe_load(pathlib.Path(path).read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes (JCS/RFC8785 subset).

    Properties:
    - Keys sorted lexicographically
    - No whitespace
    - UTF-8 encoded
    - Floats rejected (descriptors carry integers and strings only)

    Used for every byte string that is hashed or signed.
    """
    def _reject_floats(o: Any, path: str = "") -> None:
        if isinstance(o, float):
            raise ValueError(f"Float not allowed in canonical JSON at {path}")
        if isinstance(o, dict):
            for k, v in o.items():
                _reject_floats(v, f"{path}.{k}")
        if isinstance(o, list):
            for i, v in enumerate(o):
                _reject_floats(v, f"{path}[{i}]")

    _reject_floats(obj)
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Strict base64url decode; characters outside the alphabet raise ValueError."""
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.b64decode((s + pad).encode("ascii"), altchars=b"-_", validate=True)


def _cid(codec: bytes, data: bytes) -> str:
    digest = hashlib.sha256(data).digest()
    raw = CID_V1 + codec + SHA2_256_MULTIHASH + digest
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def data_cid(data: bytes) -> str:
    """CIDv1 (raw codec, sha2-256) of a data payload, multibase base32."""
    return _cid(RAW_CODEC, data)


def object_cid(obj: Any) -> str:
    """CIDv1 (dag-json codec, sha2-256) of the canonical JSON form of `obj`."""
    return _cid(DAG_JSON_CODEC, canonical_json_bytes(obj))


def is_cid(value: Any) -> bool:
    """Check if a string looks like a base32 CIDv1 produced by this module."""
    if not isinstance(value, str) or not value.startswith("b"):
        return False
    body = value[1:].upper()
    try:
        raw = base64.b32decode(body + "=" * ((8 - len(body) % 8) % 8))
    except ValueError:
        return False
    return raw[:1] == CID_V1 and raw[-34:-32] == SHA2_256_MULTIHASH


# Timestamp utilities
def _clock() -> datetime:
    """Current UTC time; `SOURCE_DATE_EPOCH` pins it for reproducible builds."""
    sde = os.environ.get("SOURCE_DATE_EPOCH")
    if sde is not None and str(sde).strip() != "":
        try:
            epoch = int(str(sde).strip(), 10)
        except ValueError as ex:
            raise ValueError("SOURCE_DATE_EPOCH must be an integer (seconds)") from ex
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(timestamp: str) -> Optional[datetime]:
    """Parse a protocol timestamp (microsecond precision, Z suffix)."""
    try:
        return datetime.strptime(timestamp, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def now_timestamp(after: Optional[str] = None) -> str:
    """Return the current protocol timestamp.

    When `after` is given the result is strictly later than it, so that two
    messages produced within the same clock tick still order correctly.
    """
    now = _clock()
    if after:
        prev = parse_timestamp(after)
        if prev is not None and now <= prev:
            now = prev + timedelta(microseconds=1)
    return format_timestamp(now)
