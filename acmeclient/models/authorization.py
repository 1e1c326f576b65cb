import enum
import typing

import josepy

from acmeclient.client.exceptions import NoChallengeFound
from .challenge import Challenge
from .identifier import Identifier


class AuthorizationStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


def decode_challenges(challenges):
    return tuple(Challenge.from_json(challenge) for challenge in challenges)


class Authorization(josepy.JSONObjectWithFields):
    """Proof-of-control record for one of an order's identifiers.

    `7.1.4. Authorization Objects <https://tools.ietf.org/html/rfc8555#section-7.1.4>`_
    """

    identifier: Identifier = josepy.Field("identifier", decoder=Identifier.from_json)
    status: AuthorizationStatus = josepy.Field("status", decoder=AuthorizationStatus)
    expires: str = josepy.Field("expires", omitempty=True)
    challenges: typing.Tuple[Challenge] = josepy.Field(
        "challenges", decoder=decode_challenges
    )
    wildcard: bool = josepy.Field("wildcard", omitempty=True)
    url: str = josepy.Field("url", omitempty=True)
    """The authorization's URL. Populated by the client, as the server does not include it."""

    def find_challenge(self, challenge_type: str) -> typing.Optional[Challenge]:
        """Returns the challenge of the given type, or *None* if the authorization does not offer one."""
        for challenge in self.challenges:
            if challenge.type == challenge_type:
                return challenge

        return None

    def challenge(self, challenge_type: str) -> Challenge:
        """Returns the challenge of the given type.

        :raises: :class:`~acmeclient.client.exceptions.NoChallengeFound` If the authorization does not offer a
            challenge of that type.
        """
        if (challenge := self.find_challenge(challenge_type)) is None:
            raise NoChallengeFound(challenge_type, self.identifier.value)

        return challenge

    def matches(self, identifier: str) -> bool:
        """Whether the authorization covers the given name.

        Wildcard authorizations carry the base domain as identifier, so they match both the plain name and
        its *\\*.* form.
        """
        if self.identifier.value == identifier:
            return True
        return bool(self.wildcard) and f"*.{self.identifier.value}" == identifier
