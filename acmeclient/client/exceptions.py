import typing

import acme.messages


class AcmeClientException(Exception):
    """General ACME client exception."""

    pass


class ConnectorException(AcmeClientException):
    """Base class for faults raised by the :class:`~acmeclient.client.connector.Connector`."""

    pass


class NoNewNonce(ConnectorException):
    """Raised if the server did not hand out a *Replay-Nonce*."""

    def __str__(self):
        return "No new nonce could be obtained from the ACME server"


class AccountDeactivated(ConnectorException):
    """Raised for every request made through a session whose account has been deactivated."""

    def __str__(self):
        return "The account was deactivated, no further requests are permitted"


class MethodNotSupported(ConnectorException):
    """Raised if a request is attempted with an HTTP method other than GET, POST or HEAD."""

    def __init__(self, method: str, *args):
        super().__init__(*args)
        self.method = method

    def __str__(self):
        return f"HTTP request method {self.method} is not supported"


class TransportError(ConnectorException):
    """Raised if the request could not be completed on the transport level."""

    pass


class InvalidDirectory(ConnectorException):
    """Raised if the server's directory lacks one of the required resource URLs."""

    pass


class InvalidResponse(ConnectorException):
    """Raised if the server answered with an unexpected HTTP status code."""

    def __init__(
        self,
        method: str,
        url: str,
        status: int,
        body: typing.Union[dict, str] = None,
        problem: acme.messages.Error = None,
    ):
        super().__init__()
        self.method = method
        self.url = url
        self.status = status
        self.body = body
        self.problem = problem
        """The parsed problem document, if the server sent one."""

    @property
    def code(self) -> typing.Optional[str]:
        """The ACME error code of the problem document, e.g. *badNonce*."""
        if self.problem is None:
            return None
        return self.problem.code

    def __str__(self):
        detail = f" :: {self.problem}" if self.problem is not None else ""
        return f"{self.method} {self.url} returned HTTP {self.status}{detail}"


class AccountException(AcmeClientException):
    pass


class AccountNotFound(AccountException):
    """Raised if no account URL could be obtained for the account key."""

    def __str__(self):
        return "No account found for the account key and none could be created"


class InvalidAccountKey(AccountException):
    """Raised if the stored account key is not an RSA key."""

    pass


class OrderException(AcmeClientException):
    pass


class InvalidKeyType(OrderException):
    def __init__(self, key_type: str, *args):
        super().__init__(*args)
        self.key_type = key_type

    def __str__(self):
        return (
            f"Key type '{self.key_type}' not supported. "
            "Use rsa, ec, rsa-<2048..4096>, ec-256 or ec-384"
        )


class InvalidOrderStatus(OrderException):
    """Raised if the order's status is *invalid*."""

    pass


class CreateFailed(OrderException):
    """Raised if the server did not create a new order."""

    pass


class InvalidArgument(OrderException):
    pass


class InvalidConfiguration(OrderException):
    pass


class AuthorizationException(AcmeClientException):
    pass


class NoChallengeFound(AuthorizationException):
    """Raised if an authorization does not offer a challenge of the requested type."""

    def __init__(self, challenge_type: str, identifier: str, *args):
        super().__init__(*args)
        self.challenge_type = challenge_type
        self.identifier = identifier

    def __str__(self):
        return (
            f"No challenge found for type '{self.challenge_type}' "
            f"and identifier '{self.identifier}'"
        )


class CouldNotValidateChallenge(AuthorizationException):
    """Exception that is raised when the local pre-check of a challenge failed."""

    def __init__(self, *args, detail=None):
        super().__init__(*args)
        self.detail = detail

    def __str__(self):
        return self.detail or "Challenge validation failed"
