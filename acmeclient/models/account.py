import enum
import typing

import josepy


class AccountStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


class Account(josepy.JSONObjectWithFields):
    """The client's view of its ACME account.

    `7.1.2. Account Objects <https://tools.ietf.org/html/rfc8555#section-7.1.2>`_

    The :attr:`url` field is populated by copying the *Location* header of the response to the
    account lookup or creation. It identifies the account and is sent as the *kid* of every
    authenticated request.
    """

    id: typing.Any = josepy.Field("id", omitempty=True)
    key: dict = josepy.Field("key", omitempty=True)
    """The account's public key as JWK."""
    contact: typing.Tuple[str] = josepy.Field("contact", omitempty=True)
    """The account's contact URIs."""
    agreement: str = josepy.Field("agreement", omitempty=True)
    initial_ip: str = josepy.Field("initialIp", omitempty=True)
    created_at: str = josepy.Field("createdAt", omitempty=True)
    status: AccountStatus = josepy.Field(
        "status", decoder=AccountStatus, omitempty=True
    )
    """The account's status."""
    orders: str = josepy.Field("orders", omitempty=True)
    """URL of the account's orders list."""
    url: str = josepy.Field("url", omitempty=True)
    """The account URL."""


class KeyChange(josepy.JSONObjectWithFields):
    """The payload of the inner JWS of an account key rollover.

    `7.3.5. Account Key Rollover <https://tools.ietf.org/html/rfc8555#section-7.3.5>`_
    """

    account: str = josepy.Field("account")
    oldKey: josepy.jwk.JWK = josepy.Field("oldKey", decoder=josepy.jwk.JWK.from_json)
