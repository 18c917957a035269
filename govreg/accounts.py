"""
Validator account generation.

Writes one Ed25519 private key file per validator plus a
``validatorAccounts.json`` index of ``{validator, address, public_key}``.
Private keys are written owner-read/write only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List

from .auth import generate_keypair, principal_from_public_key

logger = logging.getLogger(__name__)

ACCOUNTS_INDEX = "validatorAccounts.json"


@dataclass
class ValidatorAccount:
    validator: str
    address: str
    public_key: str


def generate_validator_accounts(out_dir: Path, count: int = 4, prefix: str = "validator") -> List[ValidatorAccount]:
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    accounts: List[ValidatorAccount] = []
    for i in range(1, count + 1):
        name = f"{prefix}-{i}"
        private_key, public_key = generate_keypair()
        key_path = out_dir / f"{name}.key"
        key_path.write_bytes(private_key)
        key_path.chmod(0o600)
        accounts.append(ValidatorAccount(
            validator=name,
            address=principal_from_public_key(public_key),
            public_key=public_key.decode(),
        ))

    (out_dir / ACCOUNTS_INDEX).write_text(
        json.dumps([asdict(a) for a in accounts], indent=2), encoding="utf-8"
    )
    logger.info("generated %d validator keypairs in %s", count, out_dir)
    return accounts


def load_validator_accounts(out_dir: Path) -> List[ValidatorAccount]:
    raw = json.loads((Path(out_dir) / ACCOUNTS_INDEX).read_text(encoding="utf-8"))
    return [ValidatorAccount(**entry) for entry in raw]


def read_private_key(path: Path) -> bytes:
    return Path(path).read_bytes().strip()
