"""dwnclient.did

`did:key` identifiers (Ed25519 only) and the DID resolution collaborator used
by the Router to find a DID's DWN service endpoints.

Profile / invariants:
- `did:key:z...` = multibase base58btc of multicodec `0xed01` + 32-byte public key
- A verification method id is `<did>#<fragment>`; for did:key the fragment is
  the method-specific id itself
- Service endpoints are not intrinsic to did:key; they are registered with the
  resolver (the agent does this when it creates an identity)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from dwnclient.errors import NotFoundError


B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {ch: i for i, ch in enumerate(B58_ALPHABET)}

DID_KEY_PREFIX = "did:key:z"
ED25519_PUB_MULTICODEC = b"\xed\x01"
ED25519_KEY_LENGTH = 32


def b58encode(raw: bytes) -> str:
    zeros = len(raw) - len(raw.lstrip(b"\x00"))
    num = int.from_bytes(raw, "big")
    digits: List[str] = []
    while num:
        num, rem = divmod(num, 58)
        digits.append(B58_ALPHABET[rem])
    return B58_ALPHABET[0] * zeros + "".join(reversed(digits))


def b58decode(text: str) -> bytes:
    num = 0
    for ch in text:
        try:
            num = num * 58 + _B58_INDEX[ch]
        except KeyError:
            raise ValueError(f"{ch!r} is not a base58btc digit") from None
    zeros = len(text) - len(text.lstrip(B58_ALPHABET[0]))
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * zeros + body


def did_key_from_ed25519_public_key(pub: bytes) -> str:
    return DID_KEY_PREFIX + b58encode(ED25519_PUB_MULTICODEC + pub)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Decode the Ed25519 verification key embedded in a did:key."""
    did = base_did(did)
    if not did.startswith(DID_KEY_PREFIX):
        raise ValueError(f"{did}: key material can only be derived from did:key")
    decoded = b58decode(did[len(DID_KEY_PREFIX):])
    codec, raw = decoded[:2], decoded[2:]
    if codec != ED25519_PUB_MULTICODEC:
        raise ValueError(f"{did}: not an Ed25519 did:key (multicodec {codec.hex()})")
    if len(raw) != ED25519_KEY_LENGTH:
        raise ValueError(f"{did}: Ed25519 key is {len(raw)} bytes, expected {ED25519_KEY_LENGTH}")
    return Ed25519PublicKey.from_public_bytes(raw)


def base_did(did_or_vm: str) -> str:
    """`did:x:y#frag` -> `did:x:y`."""
    return str(did_or_vm or "").partition("#")[0]


def default_key_id(did: str) -> str:
    """Verification method id for a did:key (`did:key:zX#zX`)."""

    return f"{did}#{did.split(':', 2)[2]}"


def is_did(value: str) -> bool:
    parts = str(value or "").split(":", 2)
    return len(parts) == 3 and parts[0] == "did" and bool(parts[1]) and bool(parts[2])


@dataclass
class DidResolution:
    did: str
    verification_keys: Dict[str, Ed25519PublicKey] = field(default_factory=dict)
    service_endpoints: List[str] = field(default_factory=list)


class DidResolver:
    """Resolve DIDs to verification keys and DWN service endpoints.

    Only `did:key` key material is derived; other methods must be registered
    explicitly by the embedding application.
    """

    def __init__(self) -> None:
        self._endpoints: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def register_endpoints(self, did: str, endpoints: Iterable[str]) -> None:
        eps = [str(e).strip() for e in endpoints if str(e).strip()]
        with self._lock:
            self._endpoints[base_did(did)] = eps

    def resolve(self, did: str) -> DidResolution:
        did = base_did(did)
        if not is_did(did):
            raise NotFoundError(f"Unable to resolve DID: {did!r}")
        try:
            pub = ed25519_public_key_from_did_key(did)
        except ValueError as ex:
            raise NotFoundError(f"Unable to resolve DID: {did}: {ex}") from ex

        with self._lock:
            endpoints = list(self._endpoints.get(did, []))
        return DidResolution(
            did=did,
            verification_keys={default_key_id(did): pub},
            service_endpoints=endpoints,
        )

    def public_key(self, key_id: str) -> Ed25519PublicKey:
        """Return the public key for a verification method id."""
        resolution = self.resolve(key_id)
        return next(iter(resolution.verification_keys.values()))
