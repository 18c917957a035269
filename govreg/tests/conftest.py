"""
govreg test configuration: shared fixtures and helpers.
"""
import importlib
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from govreg.auth import generate_keypair, sign_challenge
from govreg.registry import GovernanceRegistry

OWNER = "0x" + "0a" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


@pytest.fixture
def registry():
    """Registry constructed by OWNER."""
    return GovernanceRegistry(OWNER)


@pytest.fixture
def govreg_env(tmp_path, monkeypatch):
    """Point every GOVREG_* path at tmp_path."""
    monkeypatch.setenv("GOVREG_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("GOVREG_DB_PATH", str(tmp_path / "govreg_test.db"))
    monkeypatch.setenv("GOVREG_JWT_SECRET", str(tmp_path / ".jwt_secret"))
    monkeypatch.setenv("GOVREG_NETWORK", "testnet")
    return tmp_path


def load_api():
    # Force reimport to pick up the current environment
    sys.modules.pop("govreg.api_server", None)
    return importlib.import_module("govreg.api_server")


@pytest.fixture
def fresh_app(govreg_env):
    """Fresh API server with isolated database and deployments dir."""
    api_server = load_api()
    client = TestClient(api_server.app)
    return client, api_server


def register_and_auth(api_module, name="principal"):
    """Helper: register a keypair with the server's auth, return JWT + keys."""
    auth = api_module._auth
    private_key, public_key = generate_keypair()
    address = auth.register(f"{name}-{public_key[:8].decode()}", public_key)

    challenge = auth.create_challenge(address)
    result = auth.verify_challenge(address, sign_challenge(private_key, challenge))

    return {
        "address": address,
        "token": result.token,
        "private_key": private_key,
        "public_key": public_key,
        "headers": {"Authorization": f"Bearer {result.token}"},
    }


@pytest.fixture
def deployed_app(fresh_app):
    """API server with a registry deployed by a freshly registered owner."""
    client, api_server = fresh_app
    owner = register_and_auth(api_server, "owner")
    resp = client.post("/registry", headers=owner["headers"])
    assert resp.status_code == 201, resp.text
    return client, api_server, owner


# Export helpers
pytest.register_and_auth = register_and_auth
