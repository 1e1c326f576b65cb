import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from acmeclient import AcmeClient
from acmeclient.client.account import normalize_contacts
from acmeclient.client.exceptions import AccountDeactivated, InvalidAccountKey, InvalidResponse
from acmeclient.models import AccountStatus
from acmeclient.store import FileKeyStore
from acmeclient.util import private_key_pem


def test_normalize_contacts():
    assert normalize_contacts(["admin@example.org", "", "mailto:ops@example.org", "  "]) == [
        "mailto:admin@example.org",
        "mailto:ops@example.org",
    ]
    assert normalize_contacts(None) == []


@pytest.mark.asyncio
async def test_register(ca, client, keys):
    account = client.account

    assert account.status == AccountStatus.VALID
    assert account.url == client.connector.account_url
    assert list(account.contact) == ["mailto:admin@example.org"]
    assert (keys / "__account" / "private.pem").is_file()
    assert (keys / "__account" / "public.pem").is_file()
    assert len(ca.accounts) == 1


@pytest.mark.asyncio
async def test_existing_key(ca, client, keys):
    again = AcmeClient(base_url=ca.base_url, certificate_keys=str(keys))
    try:
        account = await again.start()
    finally:
        await again.close()

    assert account.url == client.account.url
    assert len(ca.accounts) == 1


@pytest.mark.asyncio
async def test_unknown_key_is_registered(ca, keys):
    first = AcmeClient(base_url=ca.base_url, certificate_keys=str(keys))
    await first.start()
    await first.close()

    ca.accounts.clear()
    second = AcmeClient(base_url=ca.base_url, certificate_keys=str(keys))
    try:
        account = await second.start()
    finally:
        await second.close()

    assert account.status == AccountStatus.VALID
    assert len(ca.accounts) == 1


@pytest.mark.asyncio
async def test_ec_account_key(ca, keys):
    (keys / "__account").mkdir(parents=True)
    (keys / "__account" / "private.pem").write_bytes(
        private_key_pem(ec.generate_private_key(ec.SECP256R1()))
    )

    client = AcmeClient(base_url=ca.base_url, certificate_keys=str(keys))
    try:
        with pytest.raises(InvalidAccountKey):
            await client.start()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_update_account(client):
    account = await client.update_account(["new@example.org", "mailto:other@example.org"])

    assert list(account.contact) == ["mailto:new@example.org", "mailto:other@example.org"]


@pytest.mark.asyncio
async def test_change_account_keys(ca, client, keys):
    old_private = (keys / "__account" / "private.pem").read_bytes()
    old_thumbprint = client.connector.signer.thumbprint

    account = await client.change_account_keys()

    assert (keys / "__account" / "private.pem").read_bytes() != old_private
    assert not (keys / "__account" / "private.pem.new").exists()
    assert not (keys / "__account" / "public.pem.new").exists()
    assert client.connector.signer.thumbprint != old_thumbprint
    assert account.key == client.connector.signer.jwk
    assert next(iter(ca.accounts.values()))["key"] == client.connector.signer.jwk


@pytest.mark.asyncio
async def test_change_account_keys_failure(ca, client, keys):
    old_private = (keys / "__account" / "private.pem").read_bytes()
    old_public = (keys / "__account" / "public.pem").read_bytes()
    old_signer = client.connector.signer

    ca.fail_key_change = True
    with pytest.raises(InvalidResponse):
        await client.change_account_keys()

    assert (keys / "__account" / "private.pem").read_bytes() == old_private
    assert (keys / "__account" / "public.pem").read_bytes() == old_public
    assert not (keys / "__account" / "private.pem.new").exists()
    assert client.connector.signer is old_signer
    await client.update_account(["admin@example.org"])


@pytest.mark.asyncio
async def test_change_account_keys_promotion_failure(ca, client, keys, monkeypatch):
    old_private = (keys / "__account" / "private.pem").read_bytes()
    old_public = (keys / "__account" / "public.pem").read_bytes()
    rename = FileKeyStore.rename

    def failing_rename(self, source, destination):
        if destination == "private_key":
            raise OSError("disk full")
        rename(self, source, destination)

    monkeypatch.setattr(FileKeyStore, "rename", failing_rename)
    with pytest.raises(OSError):
        await client.change_account_keys()

    assert (keys / "__account" / "private.pem").read_bytes() == old_private
    assert (keys / "__account" / "public.pem").read_bytes() == old_public
    assert (keys / "__account" / "private.pem.new").exists()
    assert not (keys / "__account" / "public.pem.new").exists()


@pytest.mark.asyncio
async def test_deactivate_account(ca, client):
    assert await client.deactivate_account()
    assert client.account.status == AccountStatus.DEACTIVATED
    assert next(iter(ca.accounts.values()))["status"] == "deactivated"

    requests = len(ca.requests)
    with pytest.raises(AccountDeactivated):
        await client.update_account(["admin@example.org"])
    with pytest.raises(AccountDeactivated):
        await client.get_or_create_order("example.org", ["example.org"], "ec-256")
    with pytest.raises(AccountDeactivated):
        await client.connector.get("/directory")
    assert len(ca.requests) == requests
