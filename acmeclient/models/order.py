import enum
import typing

import josepy

from .identifier import Identifier


class OrderStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


def decode_identifiers(identifiers):
    return tuple(Identifier.from_json(identifier) for identifier in identifiers)


class Order(josepy.JSONObjectWithFields):
    """An ACME order as last fetched from the server.

    `7.1.3. Order Objects <https://tools.ietf.org/html/rfc8555#section-7.1.3>`_

    The *URL* field is populated by copying the *Location* header from the response
    to the order creation, or from the persisted order URL.
    """

    status: OrderStatus = josepy.Field("status", decoder=OrderStatus)
    """The order's status."""
    expires: str = josepy.Field("expires", omitempty=True)
    identifiers: typing.Tuple[Identifier] = josepy.Field(
        "identifiers", decoder=decode_identifiers
    )
    """The identifiers the order covers."""
    authorizations: typing.Tuple[str] = josepy.Field(
        "authorizations", decoder=tuple
    )
    """The URLs of the order's authorizations."""
    finalize: str = josepy.Field("finalize")
    """The URL to which the CSR is submitted."""
    certificate: str = josepy.Field("certificate", omitempty=True)
    """The URL of the issued certificate, present once the order is *valid*."""
    not_before: str = josepy.Field("notBefore", omitempty=True)
    not_after: str = josepy.Field("notAfter", omitempty=True)
    error: dict = josepy.Field("error", omitempty=True)
    url: str = josepy.Field("url", omitempty=True)
    """The order's URL."""

    @property
    def domains(self) -> typing.List[str]:
        return [identifier.value for identifier in self.identifiers]
