"""dwnclient.credentials

Verifiable Credentials issued by an agent-held DID and carried as compact JWTs.

JWT profile:
- header  `{"alg": "EdDSA", "typ": "JWT", "kid": "<issuer did>#<fragment>"}`
- payload `{"iss": <issuer>, "sub": <subject>, "vc": <credential>}`
- signature Ed25519 over `header.payload` (base64url, no padding)

Verification resolves the issuer DID through a `DidResolver`; an issuer that
cannot be resolved fails with NotFoundError, a bad header or signature with
AuthorizationError.
"""

from __future__ import annotations

import binascii
import copy
import dataclasses
import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidSignature

from dwnclient.core import b64url_decode, b64url_encode, canonical_json_bytes, now_timestamp
from dwnclient.did import DidResolver, base_did
from dwnclient.errors import AuthorizationError, ValidationError
from dwnclient.keys import Signer

DEFAULT_CONTEXT = "https://www.w3.org/2018/credentials/v1"
DEFAULT_VC_TYPE = "VerifiableCredential"


def _subject_data(data: Any) -> Dict[str, Any]:
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        out = dataclasses.asdict(data)
    elif isinstance(data, dict):
        out = dict(data)
    elif hasattr(data, "__dict__") and not isinstance(data, type):
        out = {k: v for k, v in vars(data).items() if not k.startswith("_")}
    else:
        raise ValidationError("Expected data to be parseable into a JSON object")
    try:
        json.dumps(out, allow_nan=False)
    except (TypeError, ValueError) as ex:
        raise ValidationError("Expected data to be parseable into a JSON object") from ex
    return out


def _split_jwt(jwt: str) -> List[str]:
    parts = str(jwt or "").split(".")
    if len(parts) != 3 or not all(parts):
        raise ValidationError("Not a valid jwt")
    return parts


def _decode_segment(segment: str) -> Dict[str, Any]:
    try:
        obj = json.loads(b64url_decode(segment))
    except (ValueError, binascii.Error) as ex:
        raise ValidationError("Not a valid jwt") from ex
    if not isinstance(obj, dict):
        raise ValidationError("Not a valid jwt")
    return obj


@dataclass
class VerifiableCredential:
    vc_data_model: Dict[str, Any]

    @property
    def type(self) -> str:
        types = self.vc_data_model.get("type") or []
        return types[-1] if types else ""

    @property
    def issuer(self) -> str:
        return str(self.vc_data_model.get("issuer") or "")

    @property
    def subject(self) -> str:
        return str((self.vc_data_model.get("credentialSubject") or {}).get("id") or "")

    @property
    def id(self) -> str:
        return str(self.vc_data_model.get("id") or "")

    @classmethod
    def create(
        cls,
        type: Optional[str],
        issuer: str,
        subject: str,
        data: Any,
        expiration_date: Optional[str] = None,
    ) -> "VerifiableCredential":
        if not str(issuer or "").strip() or not str(subject or "").strip():
            raise ValidationError("Issuer and subject must be defined")
        subject_data = _subject_data(data)

        model: Dict[str, Any] = {
            "@context": [DEFAULT_CONTEXT],
            "type": [DEFAULT_VC_TYPE] + ([type] if type and type != DEFAULT_VC_TYPE else []),
            "id": f"urn:uuid:{uuid.uuid4()}",
            "issuer": issuer,
            "issuanceDate": now_timestamp(),
            "credentialSubject": {"id": subject, **subject_data},
        }
        if expiration_date is not None:
            model["expirationDate"] = expiration_date
        return cls(model)

    def to_json(self) -> Dict[str, Any]:
        return copy.deepcopy(self.vc_data_model)

    def sign(self, signer: Signer) -> str:
        """Sign as the issuer; returns a compact JWT."""
        if signer.did != base_did(self.issuer):
            raise AuthorizationError(f"Signer {signer.did} is not the credential issuer {self.issuer}")
        header = {"alg": signer.algorithm, "typ": "JWT", "kid": signer.key_id}
        payload = {"iss": self.issuer, "sub": self.subject, "vc": self.vc_data_model}
        signing_input = f"{b64url_encode(canonical_json_bytes(header))}.{b64url_encode(canonical_json_bytes(payload))}"
        signature = signer.sign(signing_input.encode("ascii"))
        return f"{signing_input}.{b64url_encode(signature)}"

    @classmethod
    def parse_jwt(cls, jwt: str) -> "VerifiableCredential":
        payload = _decode_segment(_split_jwt(jwt)[1])
        vc = payload.get("vc")
        if not isinstance(vc, dict):
            raise ValidationError("Jwt payload missing vc property")
        return cls(vc)

    @staticmethod
    def verify(jwt: str, resolver: DidResolver) -> "VerifiableCredential":
        """Verify a credential JWT against its issuer's DID; returns the credential."""
        header_b64, payload_b64, signature_b64 = _split_jwt(jwt)
        header = _decode_segment(header_b64)
        if not header.get("alg") or not header.get("kid"):
            raise AuthorizationError("Signature verification failed: Expected JWS header to contain alg and kid")

        kid = str(header["kid"])
        pub = resolver.public_key(kid)
        try:
            pub.verify(b64url_decode(signature_b64), f"{header_b64}.{payload_b64}".encode("ascii"))
        except (ValueError, binascii.Error, InvalidSignature) as ex:
            raise AuthorizationError("Signature verification failed: Invalid signature") from ex

        credential = VerifiableCredential.parse_jwt(jwt)
        if base_did(credential.issuer) != base_did(kid):
            raise AuthorizationError("Signature verification failed: kid does not belong to the issuer")
        return credential
