import logging
import typing

import josepy
from cryptography.hazmat.primitives.asymmetric import rsa

from acmeclient.client.connector import Connector
from acmeclient.client.exceptions import (
    AccountNotFound,
    InvalidAccountKey,
    InvalidResponse,
)
from acmeclient.client.jws import RequestSigner
from acmeclient.models import Account, KeyChange
from acmeclient.store import KeyStore
from acmeclient.util import (
    generate_rsa_key,
    load_private_key,
    private_key_pem,
    public_key_pem,
)

logger = logging.getLogger(__name__)

ACCOUNT_KEY_SIZE = 4096


def normalize_contacts(contacts: typing.Iterable[str]) -> typing.List[str]:
    """Drops empty entries and prefixes the remaining ones with *mailto:* unless already present."""
    normalized = []
    for contact in contacts or []:
        contact = contact.strip()
        if not contact:
            continue
        normalized.append(contact if contact.startswith("mailto:") else f"mailto:{contact}")
    return normalized


class AccountManager:
    """Looks up, registers and maintains the ACME account belonging to the stored account key.

    The account key is always RSA. It lives in the *private_key* and *public_key* slots of the
    account store and is handed to the :class:`~acmeclient.client.connector.Connector` as its signer.
    """

    def __init__(self, connector: Connector, store: KeyStore):
        self._connector = connector
        self._store = store
        self.account: typing.Optional[Account] = None

    @property
    def url(self) -> typing.Optional[str]:
        return self._connector.account_url

    def _load_signer(self) -> RequestSigner:
        key = load_private_key(self._store.read("private_key"))
        if not isinstance(key, rsa.RSAPrivateKey):
            raise InvalidAccountKey(
                f"The account key must be an RSA key, not {type(key).__name__}"
            )
        return RequestSigner(key)

    def _generate_key(self, slot_suffix: str = "") -> RequestSigner:
        key = generate_rsa_key(ACCOUNT_KEY_SIZE)
        self._store.write(f"private_key{slot_suffix}", private_key_pem(key))
        self._store.write(f"public_key{slot_suffix}", public_key_pem(key))
        return RequestSigner(key)

    async def ensure_account(self, contacts: typing.Iterable[str] = None) -> Account:
        """Finds the account of the stored account key, or registers a new one.

        Without a stored key a fresh RSA key is generated and registered. With a stored key the
        account is looked up. If the server does not know the key, it is registered.

        :param contacts: The contact addresses to register. *mailto:* is prepended where missing.
        :raises: :class:`~acmeclient.client.exceptions.AccountNotFound` If no account URL could be obtained
        :return: The account as returned by the server.
        """
        if self._store.exists("private_key"):
            self._connector.signer = self._load_signer()
            location = await self._lookup()
            if location is None:
                logger.info("No account exists for the stored key, registering it")
                location = await self._register(contacts)
        else:
            logger.info("Generating a new account key")
            self._connector.signer = self._generate_key()
            location = await self._register(contacts)

        if not location:
            raise AccountNotFound()

        self._connector.account_url = location
        logger.info("Using account %s", location)
        return await self._fetch()

    async def _lookup(self) -> typing.Optional[str]:
        try:
            resp = await self._connector.post_jwk(
                self._connector.directory.new_account, {"onlyReturnExisting": True}
            )
        except InvalidResponse as e:
            if e.code == "accountDoesNotExist":
                return None
            raise AccountNotFound() from e

        if resp.status != 200:
            raise AccountNotFound()

        return resp.location

    async def _register(self, contacts) -> typing.Optional[str]:
        payload = {
            "contact": normalize_contacts(contacts),
            "termsOfServiceAgreed": True,
        }
        try:
            resp = await self._connector.post_jwk(
                self._connector.directory.new_account, payload
            )
        except InvalidResponse as e:
            raise AccountNotFound() from e

        if resp.status != 201:
            raise AccountNotFound()

        return resp.location

    async def _fetch(self) -> Account:
        try:
            resp = await self._connector.post_as_get(self.url)
            account = Account.from_json(resp.body)
        except (InvalidResponse, josepy.errors.DeserializationError, TypeError) as e:
            raise AccountNotFound() from e

        self.account = account.update(url=self.url)
        return self.account

    async def update_account(self, contacts: typing.Iterable[str]) -> Account:
        """Replaces the account's contact addresses.

        :param contacts: The new contact addresses.
        :return: The refreshed account.
        """
        await self._connector.post_kid(
            self.url, {"contact": normalize_contacts(contacts)}
        )
        logger.info("Updated the contacts of account %s", self.url)
        return await self._fetch()

    async def change_account_keys(self) -> Account:
        """Rolls the account over to a freshly generated key.

        The new key is written to the *.new* slots first and only promoted once the server accepted
        the change. If the request fails, the new files are removed and the current key stays in place.

        :return: The refreshed account.
        """
        old_signer = self._connector.signer
        new_signer = self._generate_key(".new")

        key_change = self._connector.directory.key_change
        inner = new_signer.sign_jwk(
            KeyChange(account=self.url, oldKey=old_signer.public_jwk).to_json(),
            key_change,
            None,
        )

        try:
            await self._connector.post_kid(key_change, inner)
        except Exception:
            self._store.delete("private_key.new")
            self._store.delete("public_key.new")
            raise

        self._promote_keys(old_signer)
        self._connector.signer = new_signer
        logger.info("Changed the key of account %s", self.url)

        return await self._fetch()

    def _promote_keys(self, old_signer: RequestSigner) -> None:
        # The server already knows the new key. If the private key cannot be promoted it stays in its
        # .new slot and the public key is restored to match the private key still in place.
        self._store.rename("public_key.new", "public_key")
        try:
            self._store.rename("private_key.new", "private_key")
        except OSError:
            self._store.write("public_key", public_key_pem(old_signer.key))
            raise

    async def deactivate_account(self) -> bool:
        """Deactivates the account.

        Every request made through the connector afterwards raises
        :class:`~acmeclient.client.exceptions.AccountDeactivated`.
        """
        resp = await self._connector.post_kid(self.url, {"status": "deactivated"})
        self._connector.mark_deactivated()
        if isinstance(resp.body, dict):
            self.account = Account.from_json(resp.body).update(url=self.url)
        logger.info("Deactivated account %s", self.url)
        return True
