import json

import josepy
import pytest

from acmeclient.client.connector import Connector
from acmeclient.client.exceptions import (
    AccountDeactivated,
    InvalidDirectory,
    InvalidResponse,
    MethodNotSupported,
    NoNewNonce,
    TransportError,
)


def protected_of(jws: dict) -> dict:
    return json.loads(josepy.decode_b64jose(jws["protected"]))


async def register(connector: Connector) -> str:
    resp = await connector.post_jwk(
        connector.directory.new_account, {"termsOfServiceAgreed": True}
    )
    connector.account_url = resp.location
    return resp.location


@pytest.mark.asyncio
async def test_directory(ca, connector):
    directory = connector.directory

    assert directory.key_change == ca.url("/acme/key-change")
    assert directory.new_account == ca.url("/acme/new-account")
    assert directory.new_nonce == ca.url("/acme/new-nonce")
    assert directory.new_order == ca.url("/acme/new-order")
    assert directory.revoke_cert == ca.url("/acme/revoke-cert")
    assert connector.nonce in ca.nonces


@pytest.mark.asyncio
@pytest.mark.parametrize("member", ["keyChange", "newAccount", "newNonce", "newOrder", "revokeCert"])
async def test_directory_incomplete(ca, member):
    ca.directory_omit = member
    connector = Connector(ca.base_url)
    try:
        with pytest.raises(InvalidDirectory):
            await connector.start()
    finally:
        await connector.close()


@pytest.mark.asyncio
async def test_no_nonce(ca):
    ca.issue_nonces = False
    connector = Connector(ca.base_url)
    try:
        with pytest.raises(NoNewNonce):
            await connector.start()
    finally:
        await connector.close()


@pytest.mark.asyncio
async def test_nonce_replaced(ca, connector, signer, monkeypatch):
    sent = []
    sign_kid = signer.sign_kid

    def recording_sign_kid(*args):
        jws = sign_kid(*args)
        sent.append(protected_of(jws)["nonce"])
        return jws

    monkeypatch.setattr(signer, "sign_kid", recording_sign_kid)

    url = await register(connector)
    for _ in range(3):
        before = connector.nonce
        resp = await connector.post_as_get(url)
        assert sent[-1] == before
        assert connector.nonce == resp.nonce
        assert resp.nonce != before

    assert ca.used_nonces[-3:] == sent


@pytest.mark.asyncio
async def test_nonce_replaced_on_error(ca, connector):
    before = connector.nonce
    with pytest.raises(InvalidResponse) as e:
        await connector.post_jwk(connector.directory.new_account, {"onlyReturnExisting": True})

    assert e.value.status == 400
    assert e.value.code == "accountDoesNotExist"
    assert connector.nonce != before
    assert connector.nonce in ca.nonces


@pytest.mark.asyncio
async def test_nonce_fetched_after_post_without_nonce(ca, connector):
    url = await register(connector)
    heads = len(ca.paths("HEAD"))

    ca.withhold_nonces = 1
    await connector.post_as_get(url)

    assert len(ca.paths("HEAD")) == heads + 1
    assert connector.nonce in ca.nonces
    await connector.post_as_get(url)


@pytest.mark.asyncio
async def test_error_kept_when_nonce_refetch_fails(ca, connector):
    ca.issue_nonces = False

    with pytest.raises(InvalidResponse) as e:
        await connector.post_jwk(connector.directory.new_account, {"onlyReturnExisting": True})

    assert e.value.code == "accountDoesNotExist"
    assert isinstance(e.value.__cause__, NoNewNonce)
    assert connector.nonce is None

    ca.issue_nonces = True
    assert await register(connector)


@pytest.mark.asyncio
async def test_bad_nonce(ca, connector):
    url = await register(connector)
    connector._nonce = "c3RhbGU"

    with pytest.raises(InvalidResponse) as e:
        await connector.post_as_get(url)

    assert e.value.code == "badNonce"
    assert e.value.problem.detail == "Unknown nonce c3RhbGU"
    await connector.post_as_get(url)


@pytest.mark.asyncio
async def test_relative_url(ca, connector):
    resp = await connector.get("/directory")
    assert resp.url == ca.url("/directory")
    assert resp.body["newOrder"] == ca.url("/acme/new-order")


@pytest.mark.asyncio
async def test_status_classification(connector):
    with pytest.raises(InvalidResponse) as e:
        await connector.get("/missing")
    assert e.value.status == 404
    assert e.value.problem is None

    with pytest.raises(MethodNotSupported):
        await connector.request("PUT", "/directory")


@pytest.mark.asyncio
async def test_deactivated(connector):
    connector.mark_deactivated()

    with pytest.raises(AccountDeactivated):
        await connector.get("/directory")
    with pytest.raises(AccountDeactivated):
        await connector.head(connector.directory.new_nonce)
    with pytest.raises(AccountDeactivated):
        await connector.post_as_get("/acme/account/1")


@pytest.mark.asyncio
async def test_transport_error():
    connector = Connector("http://127.0.0.1:1")
    try:
        with pytest.raises(TransportError):
            await connector.start()
    finally:
        await connector.close()


@pytest.mark.asyncio
async def test_server_cert(tls_service, tls_ca, tmp_path, signer):
    cafile = tmp_path / "ca.pem"
    tls_ca.cert_pem.write_to_path(str(cafile))

    connector = Connector(tls_service.base_url, signer=signer, server_cert=str(cafile))
    try:
        directory = await connector.start()
        assert directory.new_order == tls_service.url("/acme/new-order")
        assert await register(connector)
    finally:
        await connector.close()


@pytest.mark.asyncio
async def test_untrusted_server(tls_service):
    connector = Connector(tls_service.base_url)
    try:
        with pytest.raises(TransportError):
            await connector.start()
    finally:
        await connector.close()
