import copy
import json

import pytest

from dwnclient.core import b64url_encode
from dwnclient.errors import AuthorizationError
from dwnclient.jws import decode_payload, sign_general_jws, verify_general_jws
from dwnclient.keys import KeyManager


@pytest.fixture
def keys():
    return KeyManager()


def test_sign_and_verify_multiple_signers(keys):
    a, b = keys.generate(), keys.generate()
    jws = sign_general_jws({"descriptorCid": "bafy"}, [keys.signer(a), keys.signer(b)])
    assert verify_general_jws(jws) == [a, b]
    assert decode_payload(jws) == {"descriptorCid": "bafy"}


def test_requires_a_signer():
    with pytest.raises(AuthorizationError):
        sign_general_jws({"x": 1}, [])


def test_tampered_payload_fails(keys):
    did = keys.generate()
    jws = sign_general_jws({"descriptorCid": "one"}, [keys.signer(did)])
    bad = copy.deepcopy(jws)
    bad["payload"] = b64url_encode(json.dumps({"descriptorCid": "two"}).encode("utf-8"))
    with pytest.raises(AuthorizationError, match="Signature verification failed"):
        verify_general_jws(bad)


def test_header_without_kid_is_rejected(keys):
    did = keys.generate()
    jws = sign_general_jws({"x": 1}, [keys.signer(did)])
    jws["signatures"][0]["protected"] = b64url_encode(b'{"alg":"EdDSA"}')
    with pytest.raises(AuthorizationError, match="Expected JWS header to contain alg and kid"):
        verify_general_jws(jws)


def test_unsupported_alg(keys):
    did = keys.generate()
    jws = sign_general_jws({"x": 1}, [keys.signer(did)])
    header = {"alg": "ES256K", "kid": keys.signer(did).key_id}
    jws["signatures"][0]["protected"] = b64url_encode(json.dumps(header).encode("utf-8"))
    with pytest.raises(AuthorizationError, match="Unsupported JWS alg"):
        verify_general_jws(jws)


@pytest.mark.parametrize("jws", [None, {}, {"payload": "e30", "signatures": []}, {"payload": "e30", "signatures": ["x"]}])
def test_malformed_envelopes(jws):
    with pytest.raises(AuthorizationError):
        verify_general_jws(jws)


def test_payload_must_be_an_object():
    with pytest.raises(AuthorizationError):
        decode_payload({"payload": b64url_encode(b"[1]")})
