import enum
import hashlib
from dataclasses import dataclass

import josepy

from acmeclient.util import b64


class ChallengeStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class ChallengeType(str, enum.Enum):
    """The challenge types the client is able to prepare.

    Subclassing :class:`str` simplifies json serialization using :func:`json.dumps`.
    """

    HTTP_01 = "http-01"
    """The ACME *http-01* challenge type.
    See `8.3. HTTP Challenge <https://tools.ietf.org/html/rfc8555#section-8.3>`_"""
    DNS_01 = "dns-01"
    """The ACME *dns-01* challenge type.
    See `8.4. DNS Challenge <https://tools.ietf.org/html/rfc8555#section-8.4>`_"""


class Challenge(josepy.JSONObjectWithFields):
    """An authorization's challenge.

    `7.1.5. Challenge Objects <https://tools.ietf.org/html/rfc8555#section-7.1.5>`_
    """

    type: str = josepy.Field("type")
    """The challenge's type. Kept as a plain string, the server may offer types the client does not know."""
    url: str = josepy.Field("url")
    """The URL used to notify the server that the challenge is ready for validation."""
    token: str = josepy.Field("token", omitempty=True)
    status: ChallengeStatus = josepy.Field("status", decoder=ChallengeStatus)
    validated: str = josepy.Field("validated", omitempty=True)
    error: dict = josepy.Field("error", omitempty=True)

    def key_authorization(self, thumbprint: str) -> str:
        """Computes the challenge's key authorization.

        .. code:: text

            keyAuthorization = token || '.' || base64url(Thumbprint(accountKey))

        :param thumbprint: The account key's JWK thumbprint.
        :return: The key authorization.
        """
        return f"{self.token}.{thumbprint}"


def dns_digest(key_authorization: str) -> str:
    """The value of the *_acme-challenge* TXT record for the given key authorization."""
    return b64(hashlib.sha256(key_authorization.encode()).digest())


def validation_domain_name(domain: str) -> str:
    if domain.startswith("*."):
        domain = domain[2:]
    return f"_acme-challenge.{domain}"


@dataclass
class Http01Data:
    """The file an HTTP server has to serve under */.well-known/acme-challenge/*."""

    identifier: str
    filename: str
    content: str
    type: ChallengeType = ChallengeType.HTTP_01


@dataclass
class Dns01Data:
    """The TXT record that has to be published for a *dns-01* challenge."""

    identifier: str
    dns_digest: str
    type: ChallengeType = ChallengeType.DNS_01

    @property
    def record_name(self) -> str:
        return validation_domain_name(self.identifier)
