import asyncio
import json
import logging
import ssl
import typing
from dataclasses import dataclass, field

import acme.messages
import aiohttp
import josepy
from aiohttp import ClientSession

from acmeclient.client.exceptions import (
    AccountDeactivated,
    InvalidDirectory,
    InvalidResponse,
    MethodNotSupported,
    NoNewNonce,
    TransportError,
)
from acmeclient.client.jws import RequestSigner
from acmeclient.models import Directory
from acmeclient.version import __version__

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = frozenset(["GET", "POST", "HEAD"])

EXPECTED_STATUS = {
    "GET": frozenset([200, 201]),
    "POST": frozenset([200, 201]),
    "HEAD": frozenset([200]),
}
"""The status codes each method must answer with; any other status is an :class:`InvalidResponse`."""


@dataclass
class Response:
    """A fully read HTTP response."""

    method: str
    url: str
    status: int
    headers: typing.Mapping[str, str]
    body: typing.Union[dict, list, str, None]
    links: typing.Dict[str, typing.List[str]] = field(default_factory=dict)
    """*Link* header targets by relation."""

    @property
    def location(self) -> typing.Optional[str]:
        return self.headers.get("Location")

    @property
    def nonce(self) -> typing.Optional[str]:
        return self.headers.get(Connector.REPLAY_NONCE)

    @property
    def alternates(self) -> typing.List[str]:
        """The URLs of alternate certificate chains."""
        return self.links.get("alternate", [])


class Connector:
    """HTTP transport and session state for one ACME account.

    The connector discovers the server's directory, owns the single replay nonce and the
    account URL, and signs requests with the account key. Requests are serialized: a signed
    request consumes the current nonce and the response hands out the next one, so two requests
    in flight would race for it. Use one connector per concurrently processed order.
    """

    REPLAY_NONCE = "Replay-Nonce"

    def __init__(
        self,
        base_url: str,
        *,
        signer: RequestSigner = None,
        server_cert: str = None,
        source_ip: str = None,
        session: ClientSession = None,
    ):
        """Creates a :class:`Connector` instance.

        :param base_url: The ACME server's base URL, the directory is expected at *{base_url}/directory*.
        :param signer: The account key signer. May be set later via :attr:`signer`.
        :param server_cert: Path of a CA certificate to add to the SSL context
        :param source_ip: Local address to bind outgoing connections to.
        :param session: The session to use, the connector then does not close it.
        """
        self.base_url = base_url.rstrip("/")
        self.signer = signer
        """Signs authenticated requests with the account key."""

        self._ssl_context = ssl.create_default_context()
        if server_cert:
            self._ssl_context.load_verify_locations(cafile=server_cert)

        self._source_ip = source_ip
        self._session = session
        self._owns_session = session is None

        self._lock = asyncio.Lock()
        self._nonce: typing.Optional[str] = None
        self.directory: typing.Optional[Directory] = None
        self.account_url: typing.Optional[str] = None
        """The URL of the account, sent as *kid* in authenticated requests."""
        self._account_deactivated = False

    @property
    def nonce(self) -> typing.Optional[str]:
        """The current, unconsumed replay nonce."""
        return self._nonce

    @property
    def account_deactivated(self) -> bool:
        return self._account_deactivated

    def mark_deactivated(self) -> None:
        """Marks the account as deactivated. No further requests are possible through this connector."""
        self._account_deactivated = True

    async def start(self) -> Directory:
        """Fetches the directory and the first nonce.

        :raises:

            * :class:`~acmeclient.client.exceptions.InvalidDirectory` If a resource URL is missing.
            * :class:`~acmeclient.client.exceptions.NoNewNonce` If no nonce could be obtained.

        :return: The server's directory.
        """
        if self._session is None:
            connector = (
                aiohttp.TCPConnector(local_addr=(self._source_ip, 0))
                if self._source_ip
                else None
            )
            self._session = ClientSession(
                connector=connector,
                headers={"User-Agent": f"acmeclient {__version__}"},
            )

        async with self._lock:
            resp = await self._request("GET", "/directory")
            try:
                self.directory = Directory.from_json(resp.body)
            except (josepy.errors.DeserializationError, TypeError) as e:
                raise InvalidDirectory(f"Invalid directory at {resp.url}: {e}") from e

            await self._new_nonce()

        return self.directory

    async def close(self):
        """Closes the connector's session.

        The connector may not be used for requests anymore after it has been closed.
        """
        if self._session is not None and self._owns_session:
            await self._session.close()

    async def get(self, url: str) -> Response:
        async with self._lock:
            return await self._request("GET", url)

    async def head(self, url: str) -> Response:
        async with self._lock:
            return await self._request("HEAD", url)

    async def post(self, url: str, data: typing.Union[dict, str, None] = None) -> Response:
        async with self._lock:
            return await self._request("POST", url, data)

    async def request(self, method: str, url: str, data=None) -> Response:
        async with self._lock:
            return await self._request(method, url, data)

    async def post_jwk(
        self, url: str, payload, signer: RequestSigner = None
    ) -> Response:
        """Sends a request signed in JWK mode.

        :param url: The request URL.
        :param payload: The request body, or the empty string for POST-as-GET.
        :param signer: The signer to use, defaults to the account key signer. Revocation requests are signed
            with the certificate key instead.
        """
        signer = signer or self.signer
        async with self._lock:
            self._check_deactivated()
            await self._ensure_nonce()
            jws = signer.sign_jwk(payload, self._absolute(url), self._nonce)
            return await self._request("POST", url, jws)

    async def post_kid(self, url: str, payload) -> Response:
        """Sends a request signed in KID mode with the account key.

        :param url: The request URL.
        :param payload: The request body, or the empty string for POST-as-GET.
        """
        async with self._lock:
            self._check_deactivated()
            await self._ensure_nonce()
            jws = self.signer.sign_kid(
                payload, self.account_url, self._absolute(url), self._nonce
            )
            return await self._request("POST", url, jws)

    async def post_as_get(self, url: str) -> Response:
        return await self.post_kid(url, "")

    def _absolute(self, url: str) -> str:
        return url if url.startswith("http") else self.base_url + url

    def _check_deactivated(self):
        if self._account_deactivated:
            raise AccountDeactivated()

    async def _ensure_nonce(self) -> None:
        if self._nonce is None:
            self._nonce = await self._new_nonce()

    async def _new_nonce(self) -> str:
        try:
            resp = await self._request("HEAD", self.directory.new_nonce)
        except (InvalidResponse, TransportError) as e:
            raise NoNewNonce() from e

        if not resp.nonce:
            raise NoNewNonce()

        return resp.nonce

    async def _request(self, method: str, url: str, data=None) -> Response:
        self._check_deactivated()

        if method not in SUPPORTED_METHODS:
            raise MethodNotSupported(method)

        request_url = self._absolute(url)
        kwargs = dict(
            headers={
                "Accept": "application/json",
                "Content-Type": "application/jose+json",
            },
            ssl=self._ssl_context,
        )
        if method == "POST":
            kwargs["data"] = data if isinstance(data, str) else json.dumps(data)

        try:
            async with self._session.request(method, request_url, **kwargs) as resp:
                body = await self._read_body(resp)
                links = {}
                for rel, link in resp.links.items():
                    links.setdefault(rel, []).append(str(link["url"]))
                response = Response(
                    method=method,
                    url=request_url,
                    status=resp.status,
                    headers=resp.headers.copy(),
                    body=body,
                    links=links,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{method} {request_url} failed: {e}") from e

        logger.debug("%s %s -> %d %s", method, request_url, response.status, body)

        error = None
        if response.status not in EXPECTED_STATUS[method]:
            error = InvalidResponse(
                method,
                request_url,
                response.status,
                body=body,
                problem=self._problem(body),
            )

        if response.nonce:
            logger.debug("Storing new nonce %s", response.nonce)
            self._nonce = response.nonce
        elif method == "POST":
            # Not expecting a new nonce with GET and HEAD requests.
            self._nonce = None
            try:
                self._nonce = await self._new_nonce()
            except NoNewNonce as e:
                if error is None:
                    raise
                raise error from e

        if error is not None:
            raise error

        return response

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse):
        if resp.method == "HEAD":
            return None

        text = await resp.text()
        if resp.content_type in ("application/json", "application/problem+json"):
            try:
                return json.loads(text)
            except ValueError:
                logger.debug("Could not decode JSON body: %s", text)
        return text

    @staticmethod
    def _problem(body) -> typing.Optional[acme.messages.Error]:
        if not isinstance(body, dict) or "type" not in body:
            return None
        try:
            return acme.messages.Error.from_json(body)
        except josepy.errors.DeserializationError:
            return None
