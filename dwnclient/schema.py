"""JSON Schema validation of message and reply wire shapes.

Provides:
- A `referencing` registry over the bundled `schemas/*.schema.json`
- Cached validators per schema
- Error lists formatted as `<json path>: <message>`
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from dwnclient.core import load_json

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
SCHEMA_BASE_URI = "https://schemas.dwnclient.dev/"

MESSAGE_SCHEMA = "message.schema.json"
REPLY_SCHEMA = "reply.schema.json"


@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    """Build a registry of all bundled schemas so `$ref`s resolve offline."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"{SCHEMA_BASE_URI}{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Return a validator for one of the bundled schemas."""
    schema = load_json(SCHEMAS_DIR / name)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_against_schema(obj: Any, name: str) -> List[str]:
    """Validate an object; returns error messages (empty if valid)."""
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


def validate_message(message: Any) -> List[str]:
    return validate_against_schema(message, MESSAGE_SCHEMA)


def validate_reply(reply: Any) -> List[str]:
    return validate_against_schema(reply, REPLY_SCHEMA)


@lru_cache(maxsize=None)
def _ref_validator(ref: str) -> Draft202012Validator:
    return Draft202012Validator({"$ref": ref}, registry=_schema_registry())


def validate_reply_entry(entry: Any, kind: str) -> List[str]:
    """Validate one reply entry against `recordEntry` or `protocolEntry`."""
    validator = _ref_validator(f"{SCHEMA_BASE_URI}{REPLY_SCHEMA}#/$defs/{kind}")
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(entry), key=lambda e: e.json_path)
    ]
