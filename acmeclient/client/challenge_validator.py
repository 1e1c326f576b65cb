import abc
import asyncio
import logging
import typing

import aiohttp
import dns.asyncresolver
import dns.exception
import dns.resolver
import yarl

from acmeclient.client.exceptions import CouldNotValidateChallenge
from acmeclient.models import ChallengeType, Challenge
from acmeclient.models.challenge import dns_digest, validation_domain_name

logger = logging.getLogger(__name__)


class ChallengeValidator(abc.ABC):
    """An abstract base class for local challenge pre-checks.

    A validator checks that a challenge has been fulfilled before the server is asked to validate it,
    so that a failed attempt does not invalidate the authorization.
    All implementations must implement the method :meth:`validate_challenge`.
    """

    SUPPORTED_CHALLENGES: typing.Iterable[ChallengeType]
    """The types of challenges that the validator implementation supports."""

    @abc.abstractmethod
    async def validate_challenge(
        self, identifier: str, challenge: Challenge, key_authorization: str
    ):
        """Validates the given challenge.

        :param identifier: The identifier the challenge belongs to.
        :param challenge: The challenge to be validated.
        :param key_authorization: The challenge's expected key authorization.
        :raises: :class:`~acmeclient.client.exceptions.CouldNotValidateChallenge` If the validation failed
        """
        pass


class Http01ChallengeValidator(ChallengeValidator):
    DEFAULT_PORT: int = 80
    SUPPORTED_CHALLENGES = frozenset([ChallengeType.HTTP_01])

    def __init__(self, port: int = DEFAULT_PORT, timeout: float = 10.0) -> None:
        super().__init__()
        self._port = port
        """Choosing the port is required for unit testing."""
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def url(self, identifier: str, challenge: Challenge) -> yarl.URL:
        url = yarl.URL(
            f"http://{identifier}/.well-known/acme-challenge/{challenge.token}"
        )
        if self._port != self.DEFAULT_PORT:
            url = url.with_port(self._port)
        return url

    async def validate_challenge(
        self, identifier: str, challenge: Challenge, key_authorization: str
    ):
        """Fetches the challenge file from the identifier's well-known path and compares it with the key authorization.

        Redirects are followed and certificates are not verified, as the server does the same.
        """
        url = self.url(identifier, challenge)
        logger.debug("Checking %s challenge for %s at %s", challenge.type, identifier, url)

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url, ssl=False) as response:
                    if response.status != 200:
                        raise CouldNotValidateChallenge(
                            detail=f"Fetching {url} failed; http_status {response.status}"
                        )
                    data = (await response.text()).strip()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CouldNotValidateChallenge(detail=f"Fetching {url} failed; {e}") from e

        if data != key_authorization:
            raise CouldNotValidateChallenge(
                detail=f"Token mismatch at {url}: {key_authorization} != {data}"
            )


class Dns01ChallengeValidator(ChallengeValidator):
    SUPPORTED_CHALLENGES = frozenset([ChallengeType.DNS_01])

    def __init__(self, resolver: dns.asyncresolver.Resolver = None) -> None:
        super().__init__()
        self._resolver = resolver or dns.asyncresolver.Resolver()

    async def query_txt(self, name: str) -> typing.Set[str]:
        """Queries the TXT records of the given name.

        :param name: Name of the TXT record to query.
        :return: The values of the TXT records.
        """
        resp = await self._resolver.resolve(name, "TXT")
        return {
            b"".join(record.strings).decode() for record in resp.rrset
        }

    async def validate_challenge(
        self, identifier: str, challenge: Challenge, key_authorization: str
    ):
        """Resolves the *_acme-challenge* TXT record of the identifier and looks for the key authorization's digest."""
        name = validation_domain_name(identifier)
        expected = dns_digest(key_authorization)
        logger.debug("Checking %s challenge for %s at %s", challenge.type, identifier, name)

        try:
            values = await self.query_txt(name)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as e:
            raise CouldNotValidateChallenge(detail=f"No TXT record at {name}") from e
        except dns.exception.DNSException as e:
            raise CouldNotValidateChallenge(detail=f"Resolving {name} failed; {e}") from e

        if expected not in values:
            raise CouldNotValidateChallenge(
                detail=f"TXT record at {name} does not contain {expected}"
            )


DEFAULT_VALIDATORS = {
    ChallengeType.HTTP_01: Http01ChallengeValidator,
    ChallengeType.DNS_01: Dns01ChallengeValidator,
}
"""The validator class used for each challenge type unless configured otherwise."""
