from .account import Account, AccountStatus, KeyChange
from .authorization import Authorization, AuthorizationStatus
from .certificate import CertificateBundle, RevocationReason
from .challenge import (
    Challenge,
    ChallengeStatus,
    ChallengeType,
    Dns01Data,
    Http01Data,
)
from .directory import Directory
from .identifier import Identifier, IdentifierType
from .order import Order, OrderStatus

__all__ = [
    "Account",
    "AccountStatus",
    "KeyChange",
    "Authorization",
    "AuthorizationStatus",
    "CertificateBundle",
    "RevocationReason",
    "Challenge",
    "ChallengeStatus",
    "ChallengeType",
    "Dns01Data",
    "Http01Data",
    "Directory",
    "Identifier",
    "IdentifierType",
    "Order",
    "OrderStatus",
]
