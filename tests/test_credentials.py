import json
from dataclasses import dataclass

import pytest

from dwnclient.core import b64url_encode
from dwnclient.credentials import VerifiableCredential
from dwnclient.did import DidResolver
from dwnclient.errors import AuthorizationError, NotFoundError, ValidationError
from dwnclient.keys import KeyManager


@dataclass
class StreetCred:
    localRespect: str
    legit: bool


@pytest.fixture
def keys():
    return KeyManager()


@pytest.fixture
def issuer(keys):
    return keys.generate()


@pytest.fixture
def subject(keys):
    return keys.generate()


def _segment(obj) -> str:
    return b64url_encode(json.dumps(obj).encode("utf-8"))


class TestCreate:
    def test_from_dataclass(self, issuer, subject):
        vc = VerifiableCredential.create("StreetCred", issuer, subject, StreetCred("high", True))
        assert vc.type == "StreetCred"
        assert vc.issuer == issuer
        assert vc.subject == subject
        assert vc.id.startswith("urn:uuid:")
        model = vc.to_json()
        assert model["type"] == ["VerifiableCredential", "StreetCred"]
        assert model["credentialSubject"] == {"id": subject, "localRespect": "high", "legit": True}

    def test_from_mapping_without_type(self, issuer, subject):
        vc = VerifiableCredential.create(None, issuer, subject, {"level": 3})
        assert vc.type == "VerifiableCredential"

    @pytest.mark.parametrize("data", ["a string", 42, ["list"]])
    def test_data_must_be_object_like(self, issuer, subject, data):
        with pytest.raises(ValidationError, match="Expected data to be parseable into a JSON object"):
            VerifiableCredential.create("T", issuer, subject, data)

    @pytest.mark.parametrize("who", ["issuer", "subject"])
    def test_issuer_and_subject_required(self, issuer, subject, who):
        args = {"issuer": issuer, "subject": subject}
        args[who] = ""
        with pytest.raises(ValidationError, match="Issuer and subject must be defined"):
            VerifiableCredential.create("T", args["issuer"], args["subject"], {"a": 1})


class TestSignAndVerify:
    def test_round_trip(self, keys, issuer, subject):
        vc = VerifiableCredential.create("StreetCred", issuer, subject, {"localRespect": "high"})
        jwt = vc.sign(keys.signer(issuer))
        assert jwt.count(".") == 2

        verified = VerifiableCredential.verify(jwt, DidResolver())
        assert verified.vc_data_model == vc.vc_data_model
        assert VerifiableCredential.parse_jwt(jwt).id == vc.id

    def test_only_the_issuer_may_sign(self, keys, issuer, subject):
        vc = VerifiableCredential.create("T", issuer, subject, {"a": 1})
        with pytest.raises(AuthorizationError):
            vc.sign(keys.signer(subject))

    def test_tampered_payload(self, keys, issuer, subject):
        jwt = VerifiableCredential.create("T", issuer, subject, {"a": 1}).sign(keys.signer(issuer))
        header, _, signature = jwt.split(".")
        forged = ".".join([header, _segment({"iss": issuer, "sub": subject, "vc": {"issuer": issuer}}), signature])
        with pytest.raises(AuthorizationError, match="Signature verification failed"):
            VerifiableCredential.verify(forged, DidResolver())

    def test_header_without_kid(self, keys, issuer, subject):
        jwt = VerifiableCredential.create("T", issuer, subject, {"a": 1}).sign(keys.signer(issuer))
        _, payload, signature = jwt.split(".")
        forged = ".".join([_segment({"alg": "EdDSA"}), payload, signature])
        with pytest.raises(
            AuthorizationError,
            match="Signature verification failed: Expected JWS header to contain alg and kid",
        ):
            VerifiableCredential.verify(forged, DidResolver())

    def test_unresolvable_issuer(self, keys, issuer, subject):
        jwt = VerifiableCredential.create("T", issuer, subject, {"a": 1}).sign(keys.signer(issuer))
        _, payload, signature = jwt.split(".")
        forged = ".".join([_segment({"alg": "EdDSA", "kid": "did:web:example.com#key-1"}), payload, signature])
        with pytest.raises(NotFoundError, match="Unable to resolve DID"):
            VerifiableCredential.verify(forged, DidResolver())

    def test_kid_from_another_did(self, keys, issuer, subject):
        vc = VerifiableCredential.create("T", issuer, subject, {"a": 1})
        signer = keys.signer(subject)
        header = _segment({"alg": "EdDSA", "typ": "JWT", "kid": signer.key_id})
        payload = _segment({"iss": issuer, "sub": subject, "vc": vc.vc_data_model})
        signature = b64url_encode(signer.sign(f"{header}.{payload}".encode("ascii")))
        with pytest.raises(AuthorizationError, match="kid does not belong to the issuer"):
            VerifiableCredential.verify(f"{header}.{payload}.{signature}", DidResolver())


class TestParse:
    @pytest.mark.parametrize("jwt", ["", "abc", "a.b", "a..c", "!!.!!.!!"])
    def test_not_a_jwt(self, jwt):
        with pytest.raises(ValidationError, match="Not a valid jwt"):
            VerifiableCredential.parse_jwt(jwt)

    def test_missing_vc(self):
        jwt = ".".join([_segment({"alg": "EdDSA"}), _segment({"iss": "did:key:zA"}), "c2ln"])
        with pytest.raises(ValidationError, match="Jwt payload missing vc property"):
            VerifiableCredential.parse_jwt(jwt)
