import enum

import josepy


class IdentifierType(str, enum.Enum):
    """The types that an :class:`Identifier` can have.

    `9.7.7. Identifier Types <https://tools.ietf.org/html/rfc8555#section-9.7.7>`_

    Subclassing :class:`str` simplifies json serialization using :func:`json.dumps`.
    """

    DNS = "dns"


class Identifier(josepy.JSONObjectWithFields):
    type: str = josepy.Field("type")
    """The identifier's type, *dns* for every identifier the client requests."""
    value: str = josepy.Field("value")
    """The identifier's value. In the case of a *dns* type identifier: the FQDN."""

    @classmethod
    def dns(cls, value: str) -> "Identifier":
        return cls(type=IdentifierType.DNS.value, value=value)
