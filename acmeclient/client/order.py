import asyncio
import logging
import typing

import josepy
from cryptography.hazmat.primitives import serialization

from acmeclient.client.authorization import AuthorizationManager
from acmeclient.client.challenge_validator import ChallengeValidator
from acmeclient.client.connector import Connector
from acmeclient.client.exceptions import (
    AccountDeactivated,
    AcmeClientException,
    CreateFailed,
    InvalidArgument,
    InvalidOrderStatus,
    InvalidResponse,
)
from acmeclient.client.jws import RequestSigner
from acmeclient.models import (
    CertificateBundle,
    Identifier,
    Order,
    OrderStatus,
    RevocationReason,
)
from acmeclient.store import KeyStore
from acmeclient.util import (
    generate_csr,
    generate_key,
    is_url,
    issuer_common_name,
    load_private_key,
    parse_key_type,
    pem_split,
    pem_to_b64der,
    private_key_pem,
    public_key_pem,
    validate_date,
)

logger = logging.getLogger(__name__)


class OrderManager:
    """Drives one certificate order from creation to issuance and revocation.

    The order's URL and certificate key are persisted in the certificate store, so that an order can be
    picked up again by a later run. Its status is only ever taken from the latest fetch.
    """

    CERTIFICATE_POLL_DELAY = 5.0
    """The delay in seconds between polls of an order that is *processing*."""
    CERTIFICATE_POLL_TRIES = 4
    """The number of times a *processing* order is polled before giving up."""

    def __init__(
        self,
        connector: Connector,
        store: KeyStore,
        basename: str,
        validators: typing.Mapping[str, ChallengeValidator] = None,
    ):
        self._connector = connector
        self._store = store
        self.basename = basename
        self.order: typing.Optional[Order] = None
        self.authorizations = AuthorizationManager(connector, validators)

    @property
    def url(self) -> typing.Optional[str]:
        return self.order.url if self.order else None

    @property
    def status(self) -> typing.Optional[OrderStatus]:
        return self.order.status if self.order else None

    def _stored_url(self) -> typing.Optional[str]:
        if not self._store.exists("order"):
            return None
        return self._store.read("order").decode().strip()

    async def load_or_create(
        self,
        domains: typing.List[str],
        key_type: str = "rsa-4096",
        not_before: str = "",
        not_after: str = "",
    ) -> Order:
        """Picks up the persisted order, or creates a new one.

        A persisted order that cannot be fetched, whose authorizations cannot be fetched or that is
        *invalid* is discarded along with its key and certificate, as is incomplete order state. A persisted order for a different set of domains is archived.

        :param domains: The domains the certificate is for.
        :param key_type: The certificate key type, see :func:`~acmeclient.util.parse_key_type`.
        :param not_before: The requested start of validity, empty or *YYYY-MM-DDThh:mm:ssZ*.
        :param not_after: The requested end of validity, empty or *YYYY-MM-DDThh:mm:ssZ*.
        :return: The order.
        """
        parse_key_type(key_type)

        url = self._stored_url()
        if not (
            is_url(url)
            and self._store.exists("private_key")
            and self._store.exists("public_key")
        ):
            if url is not None:
                logger.warning("Discarding incomplete order state %r", url)
            self._store.purge()
            return await self.create(domains, not_before, not_after, key_type)

        try:
            order = await self._fetch(url)
            if order.status == OrderStatus.INVALID:
                raise InvalidOrderStatus(f"Order {url} is invalid")
            difference = set(domains) ^ set(order.domains)
            if not difference:
                await self.authorizations.refresh_all(order.authorizations)
        except AccountDeactivated:
            raise
        except (AcmeClientException, josepy.errors.DeserializationError, TypeError) as e:
            logger.warning("Discarding order %s: %s", url, e)
            self._store.purge()
            return await self.create(domains, not_before, not_after, key_type)

        if difference:
            logger.info(
                "Domains changed (%s), archiving order %s",
                ", ".join(sorted(difference)),
                url,
            )
            self._store.archive()
            return await self.create(domains, not_before, not_after, key_type)

        self.order = order
        logger.info("Loaded order %s (%s)", url, order.status.value)
        return order

    async def create(
        self,
        domains: typing.List[str],
        not_before: str = "",
        not_after: str = "",
        key_type: str = "rsa-4096",
    ) -> Order:
        """Creates a new order and a fresh certificate key.

        :raises:

            * :class:`~acmeclient.client.exceptions.InvalidKeyType` If the key type is not supported.
            * :class:`~acmeclient.client.exceptions.InvalidArgument` If a domain or date is malformed.
            * :class:`~acmeclient.client.exceptions.CreateFailed` If the server did not create the order.
        """
        parsed_key_type = parse_key_type(key_type)
        if not domains:
            raise InvalidArgument("At least one domain is required")
        for domain in domains:
            if domain.count("*") > 1:
                raise InvalidArgument(f"{domain} contains more than one wildcard")
        validate_date(not_before, "notBefore")
        validate_date(not_after, "notAfter")

        payload = {
            "identifiers": [Identifier.dns(domain).to_partial_json() for domain in domains]
        }
        if not_before:
            payload["notBefore"] = not_before
        if not_after:
            payload["notAfter"] = not_after

        try:
            resp = await self._connector.post_kid(
                self._connector.directory.new_order, payload
            )
        except InvalidResponse as e:
            raise CreateFailed(f"Creating the order failed: {e}") from e

        if resp.status != 201 or not resp.location:
            raise CreateFailed(f"Creating the order failed: HTTP {resp.status}")

        self._store.write("order", resp.location.encode())

        key = generate_key(parsed_key_type)
        self._store.write("private_key", private_key_pem(key))
        self._store.write("public_key", public_key_pem(key))

        self.order = Order.from_json(resp.body).update(url=resp.location)
        await self.authorizations.refresh_all(self.order.authorizations)
        logger.info("Created order %s for %s", resp.location, ", ".join(domains))
        return self.order

    async def _fetch(self, url: str) -> Order:
        resp = await self._connector.post_as_get(url)
        return Order.from_json(resp.body).update(url=url)

    async def refresh(self) -> Order:
        """Fetches the order and its authorizations."""
        self.order = await self._fetch(self.order.url)
        await self.authorizations.refresh_all(self.order.authorizations)
        return self.order

    def all_authorizations_valid(self) -> bool:
        return self.authorizations.all_valid()

    def is_finalized(self) -> bool:
        return self.status in (OrderStatus.PROCESSING, OrderStatus.VALID)

    def _private_key(self):
        return load_private_key(self._store.read("private_key"))

    def common_name(self) -> str:
        domains = self.order.domains
        if self.basename in domains:
            return self.basename
        if f"*.{self.basename}" in domains:
            return f"*.{self.basename}"
        return domains[0]

    def generate_csr(self) -> str:
        """Generates a CSR for the order's identifiers with the stored certificate key.

        :return: The PEM encoded CSR.
        """
        csr = generate_csr(self.common_name(), self._private_key(), self.order.domains)
        return csr.public_bytes(serialization.Encoding.PEM).decode()

    async def finalize(self, csr: str = None) -> bool:
        """Submits the CSR once the order is *ready*.

        :param csr: The PEM encoded CSR. Generated from the stored certificate key if not given.
        :return: *False* if the order is not *ready* or not every authorization is *valid*.
        """
        await self.refresh()

        if self.order.status != OrderStatus.READY:
            logger.info("Order %s is %s, not finalizing", self.url, self.order.status.value)
            return False
        if not self.all_authorizations_valid():
            logger.info("Not every authorization of order %s is valid", self.url)
            return False

        if csr is None:
            csr = self.generate_csr()

        await self._connector.post_kid(
            self.order.finalize, {"csr": pem_to_b64der(csr, "CERTIFICATE REQUEST")}
        )
        logger.info("Finalized order %s", self.url)

        await self.refresh()
        return True

    async def get_certificate(self, preferred_chain: str = None) -> bool:
        """Downloads the certificate and stores it.

        While the order is *processing* it is polled up to :attr:`CERTIFICATE_POLL_TRIES` times.

        :param preferred_chain: The common name of the issuer the chain's first intermediate should have.
            Alternate chains are searched for it. The default chain is kept if none matches.
        :return: *False* if the order is not *valid* yet or the certificate could not be parsed.
        """
        tries = 0
        while self.order.status == OrderStatus.PROCESSING and tries < self.CERTIFICATE_POLL_TRIES:
            await asyncio.sleep(self.CERTIFICATE_POLL_DELAY)
            await self.refresh()
            tries += 1

        if self.order.status != OrderStatus.VALID or not self.order.certificate:
            logger.info("Certificate of order %s is not ready (%s)", self.url, self.order.status.value)
            return False

        resp = await self._connector.post_as_get(self.order.certificate)
        bundle = self._parse_bundle(resp.body)
        if bundle is None:
            logger.warning("No certificate found at %s", self.order.certificate)
            return False

        if preferred_chain:
            bundle = await self._select_chain(bundle, resp.alternates, preferred_chain)

        if self._store.configured("certificate"):
            self._store.write("certificate", f"{bundle.leaf}\n".encode())
        if self._store.configured("fullchain_certificate"):
            self._store.write("fullchain_certificate", bundle.fullchain.encode())

        logger.info("Stored certificate of order %s", self.url)
        return True

    @staticmethod
    def _parse_bundle(body) -> typing.Optional[CertificateBundle]:
        if not isinstance(body, str):
            return None
        if not (pems := pem_split(body)):
            return None
        return CertificateBundle(leaf=pems[0], chain=pems[1:])

    @staticmethod
    def _chain_issuer(bundle: CertificateBundle) -> typing.Optional[str]:
        return issuer_common_name(bundle.chain[0]) if bundle.chain else None

    async def _select_chain(
        self, default: CertificateBundle, alternates: typing.List[str], issuer: str
    ) -> CertificateBundle:
        if self._chain_issuer(default) == issuer:
            return default

        for url in alternates:
            try:
                resp = await self._connector.post_as_get(url)
            except InvalidResponse as e:
                logger.warning("Could not fetch alternate chain %s: %s", url, e)
                continue

            bundle = self._parse_bundle(resp.body)
            if bundle is not None and self._chain_issuer(bundle) == issuer:
                logger.info("Using alternate chain %s issued by %s", url, issuer)
                return bundle

        logger.warning("No chain issued by %s found, keeping the default chain", issuer)
        return default

    async def revoke_certificate(
        self, reason: typing.Union[int, RevocationReason] = RevocationReason.unspecified
    ) -> bool:
        """Revokes the stored certificate, signing the request with the certificate key.

        The leaf is read from the *certificate* slot, or from *fullchain_certificate* if only that one
        is configured.

        :param reason: The revocation reason.
        :return: *False* if the order is neither *valid* nor *ready* or there is no stored certificate.
        """
        if self.status not in (OrderStatus.VALID, OrderStatus.READY):
            logger.info("Order %s is %s, not revoking", self.url, self.status)
            return False

        slot = "certificate" if self._store.configured("certificate") else "fullchain_certificate"
        if not self._store.exists(slot):
            logger.info("No certificate stored for order %s", self.url)
            return False

        pems = pem_split(self._store.read(slot).decode())
        if not pems:
            logger.warning("No certificate found in the %s slot", slot)
            return False

        payload = {
            "certificate": pem_to_b64der(pems[0], "CERTIFICATE"),
            "reason": RevocationReason(reason).value,
        }
        await self._connector.post_jwk(
            self._connector.directory.revoke_cert,
            payload,
            signer=RequestSigner(self._private_key()),
        )
        logger.info("Revoked certificate of order %s", self.url)
        return True
