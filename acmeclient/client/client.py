import logging
import typing

from aiohttp import ClientSession
from pydantic_settings import BaseSettings

from acmeclient.client.account import AccountManager
from acmeclient.client.challenge_validator import ChallengeValidator
from acmeclient.client.connector import Connector
from acmeclient.client.order import OrderManager
from acmeclient.models import Account
from acmeclient.store import open_stores

logger = logging.getLogger(__name__)

LE_PRODUCTION = "https://acme-v02.api.letsencrypt.org"
LE_STAGING = "https://acme-staging-v02.api.letsencrypt.org"

KeyLocation = typing.Union[str, typing.Dict[str, str]]


class AcmeClient:
    """ACME compliant client.

    Ties together the :class:`~acmeclient.client.connector.Connector`, the account and the certificate store.
    A client holds a single nonce stream, so orders that should be processed concurrently need a client each.
    """

    LE_PRODUCTION = LE_PRODUCTION
    """The Let's Encrypt production endpoint."""
    LE_STAGING = LE_STAGING
    """The Let's Encrypt staging endpoint."""

    class Config(BaseSettings, extra="forbid"):
        base_url: str = LE_PRODUCTION
        """The ACME server's base URL, the directory is expected at *{base_url}/directory*."""
        contact: typing.List[str] = []
        """Contact addresses registered with the account."""
        certificate_keys: KeyLocation = "keys"
        """Directory of the certificate key material or a mapping of slots to file paths."""
        account_keys: KeyLocation = "__account"
        """Directory of the account key, relative to *certificate_keys*, or a mapping of slots to file paths."""
        key_type: str = "rsa-4096"
        """The certificate key type."""
        preferred_chain: typing.Optional[str] = None
        """Issuer common name of the preferred certificate chain."""
        source_ip: typing.Optional[str] = None
        """Local address for outgoing connections."""
        server_cert: typing.Optional[str] = None
        """CA bundle to trust in addition to the system's."""

    def __init__(
        self,
        *,
        base_url: str = LE_PRODUCTION,
        contact: typing.List[str] = None,
        certificate_keys: KeyLocation = "keys",
        account_keys: KeyLocation = "__account",
        source_ip: str = None,
        server_cert: str = None,
        validators: typing.Mapping[str, ChallengeValidator] = None,
        session: ClientSession = None,
    ):
        """Creates an :class:`AcmeClient` instance.

        :param base_url: The ACME server's base URL
        :param contact: The contact addresses to register. *mailto:* is prepended where missing.
        :param certificate_keys: Directory of the certificate key material or a mapping of slots to file paths.
        :param account_keys: Directory of the account key or a mapping of slots to file paths. Must be given in
            the same form as *certificate_keys*.
        :param source_ip: Local address to bind outgoing connections to.
        :param server_cert: Path of a CA certificate to add to the SSL context
        :param validators: Local challenge checks by challenge type.
        :param session: The HTTP session to use.
        """
        self._contact = contact or []
        self._validators = validators
        self._certificate_store, self._account_store = open_stores(
            certificate_keys, account_keys
        )
        self.connector = Connector(
            base_url, server_cert=server_cert, source_ip=source_ip, session=session
        )
        self.accounts = AccountManager(self.connector, self._account_store)

    @classmethod
    def from_config(cls, config: "AcmeClient.Config", **kwargs) -> "AcmeClient":
        return cls(
            base_url=config.base_url,
            contact=config.contact,
            certificate_keys=config.certificate_keys,
            account_keys=config.account_keys,
            source_ip=config.source_ip,
            server_cert=config.server_cert,
            **kwargs,
        )

    async def start(self) -> Account:
        """Fetches the directory and a nonce, then looks up or registers the account.

        Must be called before any other request.
        """
        await self.connector.start()
        return await self.accounts.ensure_account(self._contact)

    async def close(self):
        """Closes the client's session."""
        await self.connector.close()

    async def __aenter__(self) -> "AcmeClient":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def account(self) -> typing.Optional[Account]:
        return self.accounts.account

    async def get_or_create_order(
        self,
        basename: str,
        domains: typing.List[str],
        key_type: str = "rsa-4096",
        not_before: str = "",
        not_after: str = "",
    ) -> OrderManager:
        """Picks up the stored order for the domains, or creates a new one.

        :param basename: The preferred common name of the certificate.
        :param domains: The domains the certificate is for.
        :return: The manager of the order.
        """
        order = OrderManager(
            self.connector, self._certificate_store, basename, self._validators
        )
        await order.load_or_create(domains, key_type, not_before, not_after)
        return order

    async def update_account(self, contact: typing.List[str]) -> Account:
        self._contact = contact
        return await self.accounts.update_account(contact)

    async def change_account_keys(self) -> Account:
        return await self.accounts.change_account_keys()

    async def deactivate_account(self) -> bool:
        return await self.accounts.deactivate_account()
