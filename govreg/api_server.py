"""
Governance Registry API Server

FastAPI service exposing one registry per network:
- Ed25519 challenge-response auth (from auth.py); the bearer token's subject
  is the caller principal passed to every registry operation
- Owner-only and authorized-entity operations, mapped to 403 on rejection
- Event log and hash-chained journal for auditors/indexers

Run: uvicorn govreg.api_server:app --reload
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from govreg import config
from govreg.auth import PrincipalAuth
from govreg.deploy import Deployment, deploy, load_registry, record_path
from govreg.errors import InvalidArgument, NotAuthorized, NotOwner, RegistryError
from govreg.keys import key_id, normalize_key
from govreg.log import configure_logging

logger = logging.getLogger(__name__)

# =============================================================================
# SETUP
# =============================================================================

DB_PATH = config.get_db_path()
DB_PATH.parent.mkdir(parents=True, exist_ok=True)
NETWORK = config.get_network()

_auth = PrincipalAuth(db_path=DB_PATH)
_deploy_lock = threading.Lock()
_deployment: Optional[Deployment] = None

if record_path(NETWORK).exists():
    _deployment = load_registry(NETWORK, db_path=DB_PATH)

# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    public_key_hex: str = Field(..., min_length=64, max_length=64)

class ChallengeRequest(BaseModel):
    address: str

class VerifyRequest(BaseModel):
    address: str
    signature_hex: str

class DeployRequest(BaseModel):
    admin: Optional[str] = None

class TransferOwnershipRequest(BaseModel):
    new_owner: str

class AuthorizationRequest(BaseModel):
    authorized: bool

class ParameterRequest(BaseModel):
    value: str

class EventResponse(BaseModel):
    seq: int
    name: str
    args: Dict[str, Any]

class ParameterResponse(BaseModel):
    key: str
    value: str

class AuthorizationResponse(BaseModel):
    address: str
    authorized: bool

# =============================================================================
# AUTH DEPENDENCY
# =============================================================================

async def get_current_principal(authorization: Optional[str] = Header(None)) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    token = authorization[7:] if authorization.startswith("Bearer ") else authorization
    payload = _auth.verify_jwt(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if not _auth.get_principal(payload["sub"]):
        raise HTTPException(status_code=401, detail="Principal not found")
    return payload["sub"]


def _registry():
    if _deployment is None:
        raise HTTPException(status_code=503, detail=f"No registry deployed on '{NETWORK}'")
    return _deployment.registry


_STATUS_BY_ERROR = {
    NotOwner: 403,
    NotAuthorized: 403,
    InvalidArgument: 400,
}


def _http_error(exc: RegistryError) -> HTTPException:
    status = _STATUS_BY_ERROR.get(type(exc), 409)
    return HTTPException(status_code=status, detail=exc.to_dict())


def _key(raw: str) -> str:
    try:
        return normalize_key(raw)
    except InvalidArgument as exc:
        raise _http_error(exc)

# =============================================================================
# APP
# =============================================================================

configure_logging()

app = FastAPI(
    title="Governance Registry",
    description="Owner-controlled parameter registry with an auditable event log",
    version=config.GOVREG_VERSION,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# =============================================================================
# AUTH ENDPOINTS
# =============================================================================

@app.post("/auth/register")
async def register_principal(req: RegisterRequest):
    try:
        address = _auth.register(req.name, req.public_key_hex)
    except ValueError as e:
        status = 409 if "already registered" in str(e) else 400
        raise HTTPException(status_code=status, detail=str(e))
    return {"address": address}


@app.post("/auth/challenge")
async def create_challenge(req: ChallengeRequest):
    try:
        challenge = _auth.create_challenge(req.address)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"challenge_hex": challenge.hex()}


@app.post("/auth/verify")
async def verify_challenge(req: VerifyRequest):
    result = _auth.verify_challenge(req.address, req.signature_hex)
    if not result.success:
        raise HTTPException(status_code=401, detail=result.error)
    return {"token": result.token, "expires_at": result.expires_at,
            "principal": {"address": result.principal.address, "name": result.principal.name}}

# =============================================================================
# DEPLOYMENT
# =============================================================================

@app.post("/registry", status_code=201)
async def deploy_registry(req: Optional[DeployRequest] = None,
                          principal: str = Depends(get_current_principal)):
    """Construct the network's registry with the caller as owner."""
    global _deployment
    admin = req.admin if req else None
    with _deploy_lock:
        if _deployment is not None or record_path(NETWORK).exists():
            raise HTTPException(status_code=409, detail=f"Registry already deployed on '{NETWORK}'")
        try:
            _deployment = deploy(principal, network=NETWORK, db_path=DB_PATH, admin=admin)
        except RegistryError as exc:
            raise _http_error(exc)
    return _deployment.record.to_dict()


@app.get("/registry")
async def registry_info():
    registry = _registry()
    return {"deployment": _deployment.record.to_dict(), "state": registry.snapshot()}

# =============================================================================
# REGISTRY READS
# =============================================================================

@app.get("/registry/owner")
async def get_owner():
    return {"owner": _registry().owner()}


@app.get("/registry/entities/{address}", response_model=AuthorizationResponse)
async def get_authorization(address: str):
    return AuthorizationResponse(address=address, authorized=_registry().is_authorized(address))


@app.get("/registry/parameters/{key}", response_model=ParameterResponse)
async def get_parameter(key: str):
    key = _key(key)
    return ParameterResponse(key=key, value=_registry().get_parameter(key))


@app.get("/registry/keys/{name:path}")
async def derive_key(name: str):
    return {"name": name, "key": key_id(name)}


@app.get("/registry/events", response_model=List[EventResponse])
async def list_events(since: int = 0):
    return [EventResponse(**e.to_dict()) for e in _registry().events(since=since)]

# =============================================================================
# REGISTRY MUTATIONS
# =============================================================================

@app.post("/registry/ownership", response_model=EventResponse)
async def transfer_ownership(req: TransferOwnershipRequest,
                             principal: str = Depends(get_current_principal)):
    try:
        event = _registry().transfer_ownership(principal, req.new_owner)
    except RegistryError as exc:
        raise _http_error(exc)
    return EventResponse(**event.to_dict())


@app.post("/registry/entities/{address}", response_model=EventResponse)
async def set_entity_authorization(address: str, req: AuthorizationRequest,
                                   principal: str = Depends(get_current_principal)):
    try:
        event = _registry().set_entity_authorization(principal, address, req.authorized)
    except RegistryError as exc:
        raise _http_error(exc)
    return EventResponse(**event.to_dict())


@app.put("/registry/parameters/{key}", response_model=EventResponse)
async def set_parameter(key: str, req: ParameterRequest,
                        principal: str = Depends(get_current_principal)):
    try:
        event = _registry().set_parameter(principal, key, req.value)
    except RegistryError as exc:
        raise _http_error(exc)
    return EventResponse(**event.to_dict())

# =============================================================================
# WITNESS / AUDIT
# =============================================================================

@app.get("/witness")
async def witness_entries(limit: int = 50, offset: int = 0):
    _registry()
    return _deployment.journal.list_entries(limit=limit, offset=offset)


@app.get("/witness/verify")
async def witness_verify():
    _registry()
    journal = _deployment.journal
    return {"valid": journal.verify_chain(), "entries": journal.count()}

# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health")
async def health():
    return {"status": "healthy", "service": "govreg", "version": config.GOVREG_VERSION,
            "network": NETWORK, "deployed": _deployment is not None,
            "timestamp": datetime.now(timezone.utc).isoformat()}


def main() -> None:
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
