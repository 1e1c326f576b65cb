from .exceptions import AcmeClientException, CouldNotValidateChallenge
from .client import AcmeClient
from .challenge_validator import (
    ChallengeValidator,
    Dns01ChallengeValidator,
    Http01ChallengeValidator,
)

__all__ = [
    "AcmeClient",
    "AcmeClientException",
    "ChallengeValidator",
    "CouldNotValidateChallenge",
    "Dns01ChallengeValidator",
    "Http01ChallengeValidator",
]
