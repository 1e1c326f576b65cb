"""JSON Web Signature envelopes for ACME requests.

`6.2. Request Authentication <https://tools.ietf.org/html/rfc8555#section-6.2>`_
"""
import json
import typing

import josepy
from acme import jws
from cryptography.hazmat.primitives.asymmetric import rsa, ec

from acmeclient.client.exceptions import InvalidArgument

EC_ALGORITHMS = {
    256: josepy.jwa.ES256,
    384: josepy.jwa.ES384,
}


def encode_json(obj) -> str:
    """Compact JSON encoding with literal forward slashes."""
    return json.dumps(obj, separators=(",", ":")).replace("\\/", "/")


def encode_payload(payload: typing.Union[dict, str, None]) -> str:
    if payload is None or payload == "":
        return ""
    if isinstance(payload, str):
        return payload.replace("\\/", "/")
    return encode_json(payload)


def open_key(private_key) -> typing.Tuple[josepy.jwk.JWK, josepy.jwa.JWASignature]:
    """Wraps the private key in a JWK and picks the matching signature algorithm.

    :raises: :class:`~acmeclient.client.exceptions.InvalidArgument` If the key type or curve is not supported.
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        return josepy.jwk.JWKRSA(key=private_key), josepy.jwa.RS256
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        if private_key.curve.key_size not in EC_ALGORITHMS:
            raise InvalidArgument(
                f"Unsupported EC key size {private_key.curve.key_size}"
            )
        return josepy.jwk.JWKEC(key=private_key), EC_ALGORITHMS[private_key.curve.key_size]

    raise InvalidArgument(f"Unsupported key type {type(private_key).__name__}")


class RequestSigner:
    """Signs ACME request payloads with a private key.

    Account requests are signed with RSA keys (*RS256*). EC keys (*ES256*, *ES384*) are accepted
    for certificate keys, which sign revocation requests.
    """

    def __init__(self, private_key):
        self._private_key = private_key
        self._key, self._alg = open_key(private_key)

    @property
    def key(self):
        return self._private_key

    @property
    def alg(self) -> str:
        return self._alg.name

    @property
    def is_rsa(self) -> bool:
        return self._alg is josepy.jwa.RS256

    @property
    def public_jwk(self) -> josepy.jwk.JWK:
        return self._key.public_key()

    @property
    def jwk(self) -> dict:
        """The public JWK of the signing key."""
        return self.public_jwk.to_json()

    @property
    def thumbprint(self) -> str:
        """The base64url encoded `RFC 7638 <https://tools.ietf.org/html/rfc7638>`_ thumbprint of the public key."""
        return josepy.encode_b64jose(self.public_jwk.thumbprint())

    def sign_jwk(
        self, payload, url: str, nonce: typing.Optional[str]
    ) -> typing.Dict[str, str]:
        """Signs the payload, embedding the public JWK in the protected header.

        :param payload: The request body, or the empty string for POST-as-GET.
        :param url: The request URL.
        :param nonce: The replay nonce, omitted from the header if *None*.
        :return: The flattened JWS.
        """
        return self._sign(payload, url, nonce)

    def sign_kid(
        self, payload, kid: str, url: str, nonce: str
    ) -> typing.Dict[str, str]:
        """Signs the payload, referencing the account URL as *kid* in the protected header.

        :param payload: The request body, or the empty string for POST-as-GET.
        :param kid: The account URL.
        :param url: The request URL.
        :param nonce: The replay nonce.
        :return: The flattened JWS.
        """
        return self._sign(payload, url, nonce, kid=kid)

    def _sign(self, payload, url: str, nonce: typing.Optional[str], kid: str = None):
        return jws.JWS.sign(
            encode_payload(payload).encode(),
            key=self._key,
            alg=self._alg,
            nonce=josepy.decode_b64jose(nonce) if nonce is not None else None,
            url=url,
            kid=kid,
        ).to_json()
