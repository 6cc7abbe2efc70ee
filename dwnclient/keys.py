"""Signing context: Ed25519 keys held per DID.

The key manager is shared read-only across concurrent requests once identities
are imported; signing itself is a pure function of the key and the bytes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from dwnclient.core import b64url_decode, b64url_encode
from dwnclient.did import base_did, default_key_id, did_key_from_ed25519_public_key
from dwnclient.errors import AuthorizationError, ValidationError

ALGORITHM = "EdDSA"


@dataclass(frozen=True)
class Signer:
    """Signs bytes on behalf of one verification method."""
    key_id: str
    algorithm: str
    sign: Callable[[bytes], bytes]

    @property
    def did(self) -> str:
        return base_did(self.key_id)


def load_ed25519_private_key_from_jwk(jwk: Dict[str, Any]) -> Tuple[Ed25519PrivateKey, str]:
    """Load an Ed25519 private key from an OKP JWK.

    Returns:
        (private_key, did:key) derived from the public key bytes in the JWK
        (the `x` member).
    """

    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
        raise ValidationError("Only OKP/Ed25519 JWK is supported")

    d = jwk.get("d")
    x = jwk.get("x")
    if not d or not x:
        raise ValidationError("JWK must include both 'd' (private) and 'x' (public)")

    priv = Ed25519PrivateKey.from_private_bytes(b64url_decode(d))
    pub_bytes = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    if pub_bytes != b64url_decode(x):
        raise ValidationError("JWK 'x' does not match the private key")
    return priv, did_key_from_ed25519_public_key(pub_bytes)


def generate_ed25519_jwk() -> Dict[str, Any]:
    """Generate a new Ed25519 OKP JWK keypair; `kid` is the did:key key id."""

    priv = Ed25519PrivateKey.generate()
    priv_bytes = priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    pub_bytes = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    did = did_key_from_ed25519_public_key(pub_bytes)
    return {
        "kty": "OKP",
        "crv": "Ed25519",
        "alg": ALGORITHM,
        "x": b64url_encode(pub_bytes),
        "d": b64url_encode(priv_bytes),
        "kid": default_key_id(did),
    }


def public_jwk_from_private_jwk(jwk: Dict[str, Any]) -> Dict[str, Any]:
    """Return a public-only JWK (no 'd')."""

    out = dict(jwk)
    out.pop("d", None)
    return out


class KeyManager:
    """In-memory key store mapping DIDs to their signing keys."""

    def __init__(self) -> None:
        self._keys: Dict[str, Tuple[str, Ed25519PrivateKey]] = {}
        self._lock = threading.Lock()

    def import_jwk(self, jwk: Dict[str, Any]) -> str:
        """Import a private JWK; returns the DID it controls."""
        priv, did = load_ed25519_private_key_from_jwk(jwk)
        with self._lock:
            self._keys[did] = (default_key_id(did), priv)
        return did

    def generate(self) -> str:
        return self.import_jwk(generate_ed25519_jwk())

    def dids(self) -> List[str]:
        with self._lock:
            return sorted(self._keys)

    def has_key(self, did: str) -> bool:
        with self._lock:
            return base_did(did) in self._keys

    def signer(self, did: str) -> Signer:
        """Return a signer for `did`.

        Raises AuthorizationError when no key for the DID is held.
        """
        with self._lock:
            entry = self._keys.get(base_did(did))
        if entry is None:
            raise AuthorizationError(f"No signing key available for {did}")
        key_id, priv = entry
        return Signer(key_id=key_id, algorithm=ALGORITHM, sign=priv.sign)

    def forget(self, did: str) -> None:
        with self._lock:
            self._keys.pop(base_did(did), None)
