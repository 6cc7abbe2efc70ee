"""General JWS envelopes used for message authorization and attestation.

Shape:
    {"payload": <b64url canonical JSON>,
     "signatures": [{"protected": <b64url canonical header>, "signature": <b64url>}]}

The protected header is `{"alg": "EdDSA", "kid": "<did>#<fragment>"}`; the
signing input is `protected + "." + payload` as ASCII, as in RFC 7515.
"""

from __future__ import annotations

import binascii
import json
from typing import Any, Dict, List, Sequence

from cryptography.exceptions import InvalidSignature

from dwnclient.core import b64url_decode, b64url_encode, canonical_json_bytes
from dwnclient.did import base_did, ed25519_public_key_from_did_key
from dwnclient.errors import AuthorizationError
from dwnclient.keys import ALGORITHM, Signer


def sign_general_jws(payload: Dict[str, Any], signers: Sequence[Signer]) -> Dict[str, Any]:
    if not signers:
        raise AuthorizationError("At least one signer is required")
    encoded_payload = b64url_encode(canonical_json_bytes(payload))
    signatures = []
    for signer in signers:
        header = b64url_encode(canonical_json_bytes({"alg": signer.algorithm, "kid": signer.key_id}))
        sig = signer.sign(f"{header}.{encoded_payload}".encode("ascii"))
        signatures.append({"protected": header, "signature": b64url_encode(sig)})
    return {"payload": encoded_payload, "signatures": signatures}


def decode_payload(jws: Dict[str, Any]) -> Dict[str, Any]:
    try:
        payload = json.loads(b64url_decode(str(jws.get("payload") or "")))
    except (ValueError, binascii.Error) as ex:
        raise AuthorizationError(f"JWS payload is not valid base64url JSON: {ex}") from ex
    if not isinstance(payload, dict):
        raise AuthorizationError("JWS payload must be a JSON object")
    return payload


def _decode_header(protected: str) -> Dict[str, Any]:
    try:
        header = json.loads(b64url_decode(protected))
    except (ValueError, binascii.Error) as ex:
        raise AuthorizationError(f"JWS protected header is not valid base64url JSON: {ex}") from ex
    if not isinstance(header, dict) or not header.get("alg") or not header.get("kid"):
        raise AuthorizationError("Expected JWS header to contain alg and kid")
    return header


def verify_general_jws(jws: Dict[str, Any]) -> List[str]:
    """Verify every signature; returns the signer DIDs in order.

    Raises AuthorizationError on the first signature that does not verify.
    """
    if not isinstance(jws, dict):
        raise AuthorizationError("JWS must be an object")
    signatures = jws.get("signatures")
    if not isinstance(signatures, list) or not signatures:
        raise AuthorizationError("JWS has no signatures")

    payload = str(jws.get("payload") or "")
    signers: List[str] = []
    for entry in signatures:
        entry = entry if isinstance(entry, dict) else {}
        protected = str(entry.get("protected") or "")
        header = _decode_header(protected)
        if header["alg"] != ALGORITHM:
            raise AuthorizationError(f"Unsupported JWS alg: {header['alg']!r}")
        kid = str(header["kid"])
        try:
            pub = ed25519_public_key_from_did_key(kid)
            sig = b64url_decode(str(entry.get("signature") or ""))
            pub.verify(sig, f"{protected}.{payload}".encode("ascii"))
        except (ValueError, binascii.Error, InvalidSignature) as ex:
            raise AuthorizationError(f"Signature verification failed for {kid}") from ex
        signers.append(base_did(kid))
    return signers
