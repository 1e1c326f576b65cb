import asyncio
import logging
import typing

import josepy

from acmeclient.client.challenge_validator import ChallengeValidator, DEFAULT_VALIDATORS
from acmeclient.client.connector import Connector
from acmeclient.client.exceptions import CouldNotValidateChallenge
from acmeclient.models import (
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeStatus,
    ChallengeType,
    Dns01Data,
    Http01Data,
)
from acmeclient.models.challenge import dns_digest
from acmeclient.util import is_url

logger = logging.getLogger(__name__)

ChallengeData = typing.Union[Http01Data, Dns01Data]


class AuthorizationManager:
    """Keeps track of the authorizations of one order and drives their challenges."""

    VERIFY_DELAY = 1.0
    """The delay in seconds between polls of an authorization after its challenge was submitted."""

    def __init__(
        self,
        connector: Connector,
        validators: typing.Mapping[str, ChallengeValidator] = None,
    ):
        self._connector = connector
        self._validators = dict(validators) if validators is not None else {}
        self.authorizations: typing.List[Authorization] = []

    async def refresh_all(self, urls: typing.Iterable[str]) -> typing.List[Authorization]:
        """Fetches every authorization and replaces the known set with the result.

        Malformed URLs and malformed authorization objects are skipped.

        :param urls: The URLs of the order's authorizations.
        :return: The fetched authorizations.
        """
        authorizations = []
        for url in urls:
            if not is_url(url):
                logger.warning("Skipping malformed authorization URL %s", url)
                continue

            resp = await self._connector.post_as_get(url)
            try:
                authorization = Authorization.from_json(resp.body)
            except (josepy.errors.DeserializationError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed authorization at %s: %s", url, e)
                continue

            authorizations.append(authorization.update(url=url))

        self.authorizations = authorizations
        return authorizations

    async def _refresh(self, authorization: Authorization) -> Authorization:
        resp = await self._connector.post_as_get(authorization.url)
        refreshed = Authorization.from_json(resp.body).update(url=authorization.url)
        self.authorizations = [
            refreshed if known.url == authorization.url else known
            for known in self.authorizations
        ]
        return refreshed

    def get_challenge(
        self, authorization: Authorization, challenge_type: str
    ) -> Challenge:
        """Returns the authorization's challenge of the given type.

        :raises: :class:`~acmeclient.client.exceptions.NoChallengeFound` If there is none.
        """
        return authorization.challenge(challenge_type)

    def find(
        self, identifier: str, status: AuthorizationStatus = None
    ) -> typing.Optional[Authorization]:
        for authorization in self.authorizations:
            if authorization.matches(identifier) and (
                status is None or authorization.status == status
            ):
                return authorization
        return None

    def key_authorization(self, challenge: Challenge) -> str:
        return challenge.key_authorization(self._connector.signer.thumbprint)

    def filter(
        self,
        challenge_type: str,
        authorization_status: AuthorizationStatus,
        challenge_status: ChallengeStatus,
    ) -> typing.List[ChallengeData]:
        """Collects what has to be published for the challenges of the given type.

        Only authorizations with the given status whose challenge of the given type has the given
        challenge status are considered.

        :return: A :class:`~acmeclient.models.Http01Data` or :class:`~acmeclient.models.Dns01Data` per match.
        """
        result = []
        for authorization in self.authorizations:
            if authorization.status != authorization_status:
                continue
            challenge = authorization.find_challenge(challenge_type)
            if challenge is None or challenge.status != challenge_status:
                continue

            identifier = authorization.identifier.value
            key_authorization = self.key_authorization(challenge)
            if challenge_type == ChallengeType.HTTP_01:
                result.append(
                    Http01Data(
                        identifier=identifier,
                        filename=challenge.token,
                        content=key_authorization,
                    )
                )
            elif challenge_type == ChallengeType.DNS_01:
                result.append(
                    Dns01Data(
                        identifier=identifier,
                        dns_digest=dns_digest(key_authorization),
                    )
                )

        return result

    def pending(self, challenge_type: str) -> typing.List[ChallengeData]:
        return self.filter(
            challenge_type, AuthorizationStatus.PENDING, ChallengeStatus.PENDING
        )

    def valid(self, challenge_type: str) -> typing.List[ChallengeData]:
        return self.filter(
            challenge_type, AuthorizationStatus.VALID, ChallengeStatus.VALID
        )

    def all_valid(self) -> bool:
        return bool(self.authorizations) and all(
            authorization.status == AuthorizationStatus.VALID
            for authorization in self.authorizations
        )

    def validator(self, challenge_type: str) -> typing.Optional[ChallengeValidator]:
        if challenge_type not in self._validators and challenge_type in DEFAULT_VALIDATORS:
            self._validators[challenge_type] = DEFAULT_VALIDATORS[challenge_type]()
        return self._validators.get(challenge_type)

    async def _local_check(self, identifier: str, challenge: Challenge) -> bool:
        validator = self.validator(challenge.type)
        if validator is None:
            logger.warning("No local check available for %s challenges", challenge.type)
            return True

        try:
            await validator.validate_challenge(
                identifier, challenge, self.key_authorization(challenge)
            )
        except CouldNotValidateChallenge as e:
            logger.warning("Local check of %s failed: %s", identifier, e)
            return False

        return True

    async def verify(
        self,
        identifier: str,
        challenge_type: str,
        local_check: bool = True,
        timeout: float = None,
    ) -> bool:
        """Asks the server to validate the pending challenge of the given identifier.

        With *local_check*, the challenge is checked locally first and the server is not contacted
        if that fails. After the server accepted the challenge, the authorization is polled until it
        is no longer *pending*.

        :param identifier: The identifier whose challenge to verify.
        :param challenge_type: The type of the challenge to submit.
        :param local_check: Whether to check the challenge locally before submitting it.
        :param timeout: Seconds after which polling is abandoned with :class:`asyncio.TimeoutError`.
            Polls indefinitely if *None*.
        :return: *True* if the server accepted the challenge. The authorization may still have
            turned out *invalid*.
        """
        if timeout is None:
            return await self._verify(identifier, challenge_type, local_check)
        return await asyncio.wait_for(
            self._verify(identifier, challenge_type, local_check), timeout
        )

    async def _verify(self, identifier: str, challenge_type: str, local_check: bool) -> bool:
        authorization = self.find(identifier, AuthorizationStatus.PENDING)
        if authorization is None:
            logger.info("No pending authorization for %s", identifier)
            return False

        challenge = authorization.find_challenge(challenge_type)
        if challenge is None:
            logger.info("Authorization for %s has no %s challenge", identifier, challenge_type)
            return False

        if local_check and not await self._local_check(identifier, challenge):
            return False

        await self._connector.post_kid(
            challenge.url, {"keyAuthorization": self.key_authorization(challenge)}
        )
        logger.info("Submitted %s challenge for %s", challenge_type, identifier)

        while authorization.status == AuthorizationStatus.PENDING:
            await asyncio.sleep(self.VERIFY_DELAY)
            authorization = await self._refresh(authorization)

        logger.info("Authorization for %s is %s", identifier, authorization.status.value)
        return True

    async def deactivate(self, identifier: str) -> bool:
        """Deactivates the authorization of the given identifier.

        :return: *False* if there is no authorization for the identifier.
        """
        authorization = self.find(identifier)
        if authorization is None:
            return False

        await self._connector.post_kid(authorization.url, {"status": "deactivated"})
        await self.refresh_all([known.url for known in self.authorizations])
        logger.info("Deactivated authorization for %s", identifier)
        return True
