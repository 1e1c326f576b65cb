import enum
import typing
from dataclasses import dataclass, field


class RevocationReason(enum.Enum):
    """Certificate revocation reasons.

    Defined in `5.3.1. Reason Code <https://tools.ietf.org/html/rfc5280#section-5.3.1>`_ of RFC 5280.
    """

    unspecified = 0
    keyCompromise = 1
    cACompromise = 2
    affiliationChanged = 3
    superseded = 4
    cessationOfOperation = 5
    certificateHold = 6
    # value 7 is unused
    removeFromCRL = 8
    privilegeWithdrawn = 9
    aACompromise = 10


@dataclass
class CertificateBundle:
    """A leaf certificate and the chain the CA delivered with it, PEM encoded."""

    leaf: str
    chain: typing.List[str] = field(default_factory=list)

    @property
    def fullchain(self) -> str:
        return "\n".join([self.leaf] + self.chain) + "\n"
