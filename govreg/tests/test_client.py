from __future__ import annotations

import asyncio

import httpx
import pytest

from govreg.accounts import generate_validator_accounts, read_private_key
from govreg.auth import generate_keypair
from govreg.client import RegistryAsyncClient, RegistryClient, RegistryClientError
from govreg.keys import key_id

K = key_id("k")


def test_async_client_governance_flow(fresh_app):
    _, api = fresh_app
    owner_key, _ = generate_keypair()
    writer_key, _ = generate_keypair()

    async def run():
        transport = httpx.ASGITransport(app=api.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            owner = RegistryAsyncClient("http://test", client=http)
            owner_address = await owner.login(owner_key, name="owner")
            record = await owner.deploy()
            assert record["owner"] == owner_address

            writer = RegistryAsyncClient("http://test", client=http)
            writer_address = await writer.login(writer_key, name="writer")

            with pytest.raises(RegistryClientError) as exc_info:
                await writer.set_parameter(K, "v")
            assert exc_info.value.status_code == 403
            assert exc_info.value.error == "NotAuthorized"

            await owner.set_entity_authorization(writer_address, True)
            event = await writer.set_parameter(K, "v")
            assert event["name"] == "ParameterSet"
            assert await writer.get_parameter(K) == "v"
            assert await writer.is_authorized(writer_address) is True

            await owner.transfer_ownership(writer_address)
            assert await owner.owner() == writer_address
            assert [e["name"] for e in await owner.events()] == [
                "EntityAuthorized", "ParameterSet", "OwnershipTransferred",
            ]

    asyncio.run(run())


def test_sync_client_with_validator_key(fresh_app, tmp_path):
    test_client, _ = fresh_app
    account = generate_validator_accounts(tmp_path / "validators", count=1)[0]
    private_key = read_private_key(tmp_path / "validators" / f"{account.validator}.key")

    c = RegistryClient("http://testserver", client=test_client)
    assert c.login(private_key) == account.address
    # Logging in again reuses the existing registration
    assert c.login(private_key) == account.address

    c.deploy()
    assert c.owner() == account.address
    assert c.key_id("k") == K
    c.set_parameter(K, "v")
    assert c.info()["state"]["parameters"] == {K: "v"}
    assert c.witness(limit=10)[0]["name"] == "ParameterSet"
    assert c.verify_witness()["valid"] is True

    with pytest.raises(RegistryClientError) as exc_info:
        c.transfer_ownership("0x0")
    assert exc_info.value.error == "InvalidArgument"
    assert exc_info.value.status_code == 400


def test_client_surfaces_structured_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403,
            json={"detail": {"error": "NotOwner", "message": "GovernanceRegistry: caller is not the owner"}},
        )

    transport = httpx.MockTransport(handler)
    with httpx.Client(transport=transport, base_url="http://test") as http:
        c = RegistryClient("http://test", client=http)
        with pytest.raises(RegistryClientError) as exc_info:
            c.transfer_ownership("0xabc")

    err = exc_info.value
    assert (err.status_code, err.error) == (403, "NotOwner")
    assert err.message == "GovernanceRegistry: caller is not the owner"


@pytest.mark.parametrize(
    "response, expected",
    [
        (httpx.Response(401, json={"detail": "Invalid or expired token"}), ("HTTPError", "Invalid or expired token")),
        (httpx.Response(502, text="upstream down"), ("HTTPError", "upstream down")),
        (httpx.Response(500), ("HTTPError", "Internal Server Error")),
    ],
)
def test_client_surfaces_plain_errors(response, expected):
    transport = httpx.MockTransport(lambda request: response)
    with httpx.Client(transport=transport, base_url="http://test") as http:
        c = RegistryClient("http://test", client=http)
        with pytest.raises(RegistryClientError) as exc_info:
            c.health_check()
    assert (exc_info.value.error, exc_info.value.message) == expected


def test_client_sends_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        return httpx.Response(200, json={"seq": 1, "name": "ParameterSet", "args": {"key": K, "value": "v"}})

    with httpx.Client(transport=httpx.MockTransport(handler), base_url="http://test") as http:
        c = RegistryClient("http://test", client=http)
        c.auth.bearer_token = "tok"
        c.set_parameter(K, "v")

    assert seen == {"auth": "Bearer tok", "path": f"/registry/parameters/{K}"}


def test_client_quotes_path_segments():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.raw_path.decode())
        return httpx.Response(200, json={"key": K, "value": "", "authorized": False})

    with httpx.Client(transport=httpx.MockTransport(handler), base_url="http://test") as http:
        c = RegistryClient("http://test", client=http)
        c.key_id("a/b?c#d")
        c.get_parameter("x/../owner")
        c.is_authorized("0xab?cd")

    assert seen == [
        "/registry/keys/a%2Fb%3Fc%23d",
        "/registry/parameters/x%2F..%2Fowner",
        "/registry/entities/0xab%3Fcd",
    ]


def test_key_names_with_reserved_characters_round_trip(fresh_app):
    test_client, _ = fresh_app
    c = RegistryClient("http://testserver", client=test_client)

    for name in ("a/b", "quorum?x=1", "fee#bps"):
        assert c.key_id(name) == key_id(name)
