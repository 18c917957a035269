from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .auth import HexLike, principal_from_public_key, public_key_for, sign_challenge


class RegistryClientError(RuntimeError):
    """Non-2xx response from the registry service."""

    def __init__(self, status_code: int, error: str, message: str):
        self.status_code = status_code
        self.error = error
        self.message = message
        super().__init__(f"{status_code} {error}: {message}")


def _extract_error(response: httpx.Response) -> tuple[str, str]:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return "HTTPError", text if text else response.reason_phrase
    detail = body.get("detail", body) if isinstance(body, dict) else body
    if isinstance(detail, dict) and "error" in detail:
        return str(detail["error"]), str(detail.get("message", ""))
    return "HTTPError", str(detail)


def _raise_for_status(response: httpx.Response) -> None:
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        error, message = _extract_error(response)
        raise RegistryClientError(response.status_code, error, message) from exc


@dataclass
class RegistryAuth:
    bearer_token: Optional[str] = None

    def headers(self) -> dict[str, str]:
        if self.bearer_token:
            return {"Authorization": f"Bearer {self.bearer_token}"}
        return {}


class RegistryClient:
    """
    Client for the governance registry service (`govreg/api_server.py`).

    Reads need no credentials. Mutations need a bearer token, obtained with
    ``login(private_key)`` which registers the key if needed and runs the
    challenge-response flow.
    """

    def __init__(
        self,
        base_url: str,
        auth: Optional[RegistryAuth] = None,
        client: Optional[httpx.Client] = None,
        timeout_s: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = auth or RegistryAuth()
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def health_check(self) -> dict[str, Any]:
        r = self._client.get("/health")
        _raise_for_status(r)
        return r.json()

    # --- Auth ---
    def register(self, name: str, public_key_hex: HexLike) -> str:
        if isinstance(public_key_hex, bytes):
            public_key_hex = public_key_hex.decode()
        r = self._client.post("/auth/register", json={"name": name, "public_key_hex": public_key_hex})
        _raise_for_status(r)
        return r.json()["address"]

    def login(self, private_key: HexLike, name: str = "govreg-client") -> str:
        """Authenticate as the principal for ``private_key``. Returns its address."""
        try:
            address = self.register(name, public_key_for(private_key))
        except RegistryClientError as exc:
            if exc.status_code != 409:
                raise
            address = principal_from_public_key(public_key_for(private_key))

        r = self._client.post("/auth/challenge", json={"address": address})
        _raise_for_status(r)
        challenge = bytes.fromhex(r.json()["challenge_hex"])
        signature = sign_challenge(private_key, challenge).decode()

        r = self._client.post("/auth/verify", json={"address": address, "signature_hex": signature})
        _raise_for_status(r)
        self.auth.bearer_token = r.json()["token"]
        return address

    # --- Deployment ---
    def deploy(self, admin: Optional[str] = None) -> dict[str, Any]:
        r = self._client.post("/registry", headers=self.auth.headers(), json={"admin": admin})
        _raise_for_status(r)
        return r.json()

    def info(self) -> dict[str, Any]:
        r = self._client.get("/registry")
        _raise_for_status(r)
        return r.json()

    # --- Reads ---
    def owner(self) -> str:
        r = self._client.get("/registry/owner")
        _raise_for_status(r)
        return r.json()["owner"]

    def is_authorized(self, address: str) -> bool:
        r = self._client.get(f"/registry/entities/{quote(address, safe='')}")
        _raise_for_status(r)
        return r.json()["authorized"]

    def get_parameter(self, key: str) -> str:
        r = self._client.get(f"/registry/parameters/{quote(key, safe='')}")
        _raise_for_status(r)
        return r.json()["value"]

    def key_id(self, name: str) -> str:
        r = self._client.get(f"/registry/keys/{quote(name, safe='')}")
        _raise_for_status(r)
        return r.json()["key"]

    def events(self, *, since: int = 0) -> list[dict[str, Any]]:
        r = self._client.get("/registry/events", params={"since": since})
        _raise_for_status(r)
        return r.json()

    def witness(self, *, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        r = self._client.get("/witness", params={"limit": limit, "offset": offset})
        _raise_for_status(r)
        return r.json()

    def verify_witness(self) -> dict[str, Any]:
        r = self._client.get("/witness/verify")
        _raise_for_status(r)
        return r.json()

    # --- Mutations ---
    def transfer_ownership(self, new_owner: str) -> dict[str, Any]:
        r = self._client.post("/registry/ownership", headers=self.auth.headers(), json={"new_owner": new_owner})
        _raise_for_status(r)
        return r.json()

    def set_entity_authorization(self, entity: str, authorized: bool) -> dict[str, Any]:
        r = self._client.post(
            f"/registry/entities/{quote(entity, safe='')}",
            headers=self.auth.headers(),
            json={"authorized": authorized},
        )
        _raise_for_status(r)
        return r.json()

    def set_parameter(self, key: str, value: str) -> dict[str, Any]:
        r = self._client.put(
            f"/registry/parameters/{quote(key, safe='')}", headers=self.auth.headers(), json={"value": value}
        )
        _raise_for_status(r)
        return r.json()


class RegistryAsyncClient:
    """Async variant (useful for ASGITransport tests and async services)."""

    def __init__(
        self,
        base_url: str,
        auth: Optional[RegistryAuth] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = auth or RegistryAuth()
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_s)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def health_check(self) -> dict[str, Any]:
        r = await self._client.get("/health")
        _raise_for_status(r)
        return r.json()

    async def login(self, private_key: HexLike, name: str = "govreg-client") -> str:
        public_key = public_key_for(private_key).decode()
        r = await self._client.post("/auth/register", json={"name": name, "public_key_hex": public_key})
        if r.status_code == 409:
            address = principal_from_public_key(public_key)
        else:
            _raise_for_status(r)
            address = r.json()["address"]

        r = await self._client.post("/auth/challenge", json={"address": address})
        _raise_for_status(r)
        signature = sign_challenge(private_key, bytes.fromhex(r.json()["challenge_hex"])).decode()

        r = await self._client.post("/auth/verify", json={"address": address, "signature_hex": signature})
        _raise_for_status(r)
        self.auth.bearer_token = r.json()["token"]
        return address

    async def deploy(self, admin: Optional[str] = None) -> dict[str, Any]:
        r = await self._client.post("/registry", headers=self.auth.headers(), json={"admin": admin})
        _raise_for_status(r)
        return r.json()

    async def owner(self) -> str:
        r = await self._client.get("/registry/owner")
        _raise_for_status(r)
        return r.json()["owner"]

    async def is_authorized(self, address: str) -> bool:
        r = await self._client.get(f"/registry/entities/{quote(address, safe='')}")
        _raise_for_status(r)
        return r.json()["authorized"]

    async def get_parameter(self, key: str) -> str:
        r = await self._client.get(f"/registry/parameters/{quote(key, safe='')}")
        _raise_for_status(r)
        return r.json()["value"]

    async def events(self, *, since: int = 0) -> list[dict[str, Any]]:
        r = await self._client.get("/registry/events", params={"since": since})
        _raise_for_status(r)
        return r.json()

    async def transfer_ownership(self, new_owner: str) -> dict[str, Any]:
        r = await self._client.post(
            "/registry/ownership", headers=self.auth.headers(), json={"new_owner": new_owner}
        )
        _raise_for_status(r)
        return r.json()

    async def set_entity_authorization(self, entity: str, authorized: bool) -> dict[str, Any]:
        r = await self._client.post(
            f"/registry/entities/{quote(entity, safe='')}",
            headers=self.auth.headers(),
            json={"authorized": authorized},
        )
        _raise_for_status(r)
        return r.json()

    async def set_parameter(self, key: str, value: str) -> dict[str, Any]:
        r = await self._client.put(
            f"/registry/parameters/{quote(key, safe='')}", headers=self.auth.headers(), json={"value": value}
        )
        _raise_for_status(r)
        return r.json()
