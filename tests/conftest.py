import pytest
import pytest_asyncio
import trustme
from cryptography.hazmat.primitives.asymmetric import rsa

import acmeclient.client.account
from acmeclient import AcmeClient
from acmeclient.client.authorization import AuthorizationManager
from acmeclient.client.connector import Connector
from acmeclient.client.jws import RequestSigner
from acmeclient.client.order import OrderManager
from .services import FakeCA, HTTP01Service


@pytest.fixture(autouse=True)
def fast_client(monkeypatch):
    """Smaller account keys and no delays between polls."""
    monkeypatch.setattr(acmeclient.client.account, "ACCOUNT_KEY_SIZE", 2048)
    monkeypatch.setattr(OrderManager, "CERTIFICATE_POLL_DELAY", 0)
    monkeypatch.setattr(AuthorizationManager, "VERIFY_DELAY", 0)


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def signer(rsa_key):
    return RequestSigner(rsa_key)


@pytest_asyncio.fixture
async def ca():
    s = FakeCA()
    await s.run()
    yield s
    await s.stop()


@pytest.fixture(scope="session")
def tls_ca():
    return trustme.CA()


@pytest_asyncio.fixture
async def tls_service(tls_ca):
    s = FakeCA(tls_cert=tls_ca.issue_cert("127.0.0.1"))
    await s.run()
    yield s
    await s.stop()


@pytest_asyncio.fixture
async def connector(ca, signer):
    c = Connector(ca.base_url, signer=signer)
    await c.start()
    yield c
    await c.close()


@pytest.fixture
def keys(tmp_path):
    return tmp_path / "keys"


@pytest_asyncio.fixture
async def client(ca, keys):
    c = AcmeClient(
        base_url=ca.base_url,
        contact=["admin@example.org"],
        certificate_keys=str(keys),
    )
    await c.start()
    yield c
    await c.close()


@pytest_asyncio.fixture
async def http01():
    s = HTTP01Service()
    await s.run()
    yield s
    await s.stop()
