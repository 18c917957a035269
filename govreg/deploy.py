"""
Registry deployment.

Constructs a registry once per network, journals it, optionally seeds it,
and writes a deployment record to ``<data_dir>/deployments/<network>.json``:

    {network, address, deployer, owner, deployed_at, journal}

Seeding goes through the normal registry operations as the deployer, so it
shows up in the event log like any other change. A genesis file is YAML:

    authorized_entities:
      "0x5f1c...": true
    parameters:
      quorum: "4"          # names are hashed with govreg.keys.key_id
      "0x4c1d...": "raw"   # well-formed key ids are used as-is
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from . import config
from .auth import HexLike, principal_from_public_key, public_key_for
from .errors import DeploymentError, RegistryError
from .keys import resolve_key, validate_principal
from .registry import GovernanceRegistry
from .witness import EventJournal

logger = logging.getLogger(__name__)


@dataclass
class DeploymentRecord:
    network: str
    address: str
    deployer: str
    owner: str
    deployed_at: str
    journal: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Deployment:
    record: DeploymentRecord
    registry: GovernanceRegistry
    journal: EventJournal


def principal_for_key(private_key: HexLike) -> str:
    return principal_from_public_key(public_key_for(private_key))


def record_path(network: str, data_dir: Optional[Path] = None) -> Path:
    base = Path(data_dir) / "deployments" if data_dir else config.get_deployments_dir()
    return base / f"{network}.json"


def registry_address(deployer: str, network: str, deployed_at: str) -> str:
    digest = hashlib.sha256(f"{deployer}|{network}|{deployed_at}".encode()).hexdigest()
    return "0x" + digest[:40]


def load_genesis(path: Path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise DeploymentError(f"Genesis file not found: {path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise DeploymentError(f"Genesis file must be a mapping: {path}")
    return raw


def apply_genesis(registry: GovernanceRegistry, deployer: str, genesis: Dict[str, Any]) -> int:
    """Apply a genesis mapping as ``deployer``. Returns the number of events emitted."""
    entities = genesis.get("authorized_entities") or {}
    parameters = genesis.get("parameters") or {}
    if not isinstance(entities, dict) or not isinstance(parameters, dict):
        raise DeploymentError("Genesis 'authorized_entities' and 'parameters' must be mappings")

    emitted = 0
    for entity, authorized in entities.items():
        registry.set_entity_authorization(deployer, str(entity), bool(authorized))
        emitted += 1
    for name, value in parameters.items():
        registry.set_parameter(deployer, resolve_key(str(name)), str(value))
        emitted += 1
    return emitted


def deploy(
    deployer: str,
    *,
    network: Optional[str] = None,
    data_dir: Optional[Path] = None,
    db_path: Optional[Path] = None,
    admin: Optional[str] = None,
    genesis: Optional[Dict[str, Any]] = None,
) -> Deployment:
    """
    Construct and record a registry for ``network``.

    Args:
        deployer: Principal id of the constructing caller
        network: Deployment name (defaults to GOVREG_NETWORK)
        data_dir: Root for deployment records (defaults to GOVREG_DATA_DIR)
        db_path: Journal database (defaults to GOVREG_DB_PATH)
        admin: Principal to authorize right after construction
        genesis: Genesis mapping (see module docstring)

    Raises:
        DeploymentError: network already deployed, or seeding was rejected
    """
    validate_principal(deployer, "deployer")
    network = network or config.get_network()
    path = record_path(network, data_dir)
    if path.exists():
        raise DeploymentError(f"Registry already deployed on '{network}': {path}")

    deployed_at = datetime.now(timezone.utc).isoformat()
    address = registry_address(deployer, network, deployed_at)
    logger.info("deploying registry on %s as %s", network, deployer)

    registry = GovernanceRegistry(deployer)
    journal = EventJournal(address, db_path=db_path)
    journal.attach(registry)

    try:
        if admin:
            registry.set_entity_authorization(deployer, admin, True)
        if genesis:
            apply_genesis(registry, deployer, genesis)
    except RegistryError as exc:
        raise DeploymentError(f"Registry initialization failed: {exc.message}") from exc

    record = DeploymentRecord(
        network=network,
        address=address,
        deployer=deployer,
        owner=registry.owner(),
        deployed_at=deployed_at,
        journal=str(journal.db_path),
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(record.to_dict(), indent=2), encoding="utf-8")
    logger.info("registry deployed to %s (record: %s)", address, path)
    return Deployment(record=record, registry=registry, journal=journal)


def read_record(network: Optional[str] = None, data_dir: Optional[Path] = None) -> DeploymentRecord:
    network = network or config.get_network()
    path = record_path(network, data_dir)
    if not path.exists():
        raise DeploymentError(f"No registry deployed on '{network}' (missing {path})")
    try:
        return DeploymentRecord(**json.loads(path.read_text(encoding="utf-8")))
    except (ValueError, TypeError) as exc:
        raise DeploymentError(f"Corrupt deployment record {path}: {exc}") from exc


def load_registry(
    network: Optional[str] = None,
    data_dir: Optional[Path] = None,
    db_path: Optional[Path] = None,
) -> Deployment:
    """Rebuild a deployed registry from its record and journal."""
    record = read_record(network, data_dir)
    journal = EventJournal(record.address, db_path=db_path or Path(record.journal))
    entries = journal.list_entries()
    if not journal.verify_chain(entries):
        raise DeploymentError(f"Journal for {record.address} failed hash-chain verification")

    try:
        registry = GovernanceRegistry.replay(record.deployer, journal.load_events())
    except (RegistryError, ValueError, TypeError) as exc:
        raise DeploymentError(f"Journal for {record.address} could not be replayed: {exc}") from exc
    journal.attach(registry)
    logger.info("loaded registry %s on %s (%d events)", record.address, record.network, len(entries))
    return Deployment(record=record, registry=registry, journal=journal)
