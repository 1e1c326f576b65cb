import hashlib
import json

import josepy
import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from acmeclient.client.exceptions import InvalidArgument
from acmeclient.client.jws import RequestSigner, encode_payload
from acmeclient.models import Challenge
from acmeclient.models.challenge import dns_digest

from .services import rfc7638_thumbprint, verify_signature

NONCE = josepy.encode_b64jose(b"nonce")


def decode(part: str) -> dict:
    return json.loads(josepy.decode_b64jose(part))


def test_thumbprint_canonical_form(signer):
    jwk = signer.jwk
    canonical = '{"e":"%s","kty":"RSA","n":"%s"}' % (jwk["e"], jwk["n"])
    expected = josepy.encode_b64jose(hashlib.sha256(canonical.encode()).digest())

    assert signer.thumbprint == expected
    assert signer.thumbprint == rfc7638_thumbprint(jwk)


def test_thumbprint_deterministic(rsa_key):
    assert RequestSigner(rsa_key).thumbprint == RequestSigner(rsa_key).thumbprint

    other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    assert RequestSigner(other).thumbprint != RequestSigner(rsa_key).thumbprint


def test_thumbprint_matches_josepy(rsa_key):
    jwk = josepy.jwk.JWKRSA(key=rsa_key.public_key())
    assert RequestSigner(rsa_key).thumbprint == josepy.encode_b64jose(jwk.thumbprint())


def test_key_authorization_and_digest(signer):
    challenge = Challenge.from_json(
        {"type": "dns-01", "url": "https://ca/chall/1", "token": "tok3n", "status": "pending"}
    )
    key_authorization = challenge.key_authorization(signer.thumbprint)

    assert key_authorization == f"tok3n.{signer.thumbprint}"
    assert dns_digest(key_authorization) == josepy.encode_b64jose(
        hashlib.sha256(key_authorization.encode()).digest()
    )


def test_sign_jwk(signer):
    jws = signer.sign_jwk({"onlyReturnExisting": True}, "https://ca/new-account", NONCE)
    protected = decode(jws["protected"])

    assert protected == {
        "alg": "RS256",
        "jwk": {"kty": "RSA", "n": signer.jwk["n"], "e": signer.jwk["e"]},
        "nonce": NONCE,
        "url": "https://ca/new-account",
    }
    assert decode(jws["payload"]) == {"onlyReturnExisting": True}
    verify_signature(jws, signer.jwk, "RS256")


def test_sign_jwk_without_nonce(signer):
    protected = decode(signer.sign_jwk({}, "https://ca/key-change", None)["protected"])
    assert "nonce" not in protected


def test_sign_kid_post_as_get(signer):
    jws = signer.sign_kid("", "https://ca/account/1", "https://ca/order/1", NONCE)

    assert decode(jws["protected"]) == {
        "alg": "RS256",
        "kid": "https://ca/account/1",
        "nonce": NONCE,
        "url": "https://ca/order/1",
    }
    assert jws["payload"] == ""
    verify_signature(jws, signer.jwk, "RS256")


def test_payload_slashes():
    assert encode_payload({"url": "https://ca/a/b"}) == '{"url":"https://ca/a/b"}'
    assert encode_payload('{"url":"https:\\/\\/ca"}') == '{"url":"https://ca"}'
    assert encode_payload(None) == ""
    assert encode_payload("") == ""


@pytest.mark.parametrize("curve, alg", [(ec.SECP256R1(), "ES256"), (ec.SECP384R1(), "ES384")])
def test_sign_ec(curve, alg):
    signer = RequestSigner(ec.generate_private_key(curve))
    jws = signer.sign_jwk({"certificate": "x", "reason": 0}, "https://ca/revoke-cert", NONCE)

    assert signer.alg == alg
    assert not signer.is_rsa
    assert decode(jws["protected"])["jwk"]["kty"] == "EC"
    verify_signature(jws, signer.jwk, alg)


def test_unsupported_key():
    with pytest.raises(InvalidArgument):
        RequestSigner(ec.generate_private_key(ec.SECP521R1()))
