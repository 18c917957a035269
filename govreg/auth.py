"""
Governance Registry Authentication

Ed25519 challenge-response. The registry itself never authenticates anyone;
this module turns a signature over a server challenge into a short-lived
bearer token whose subject is the caller's principal id.

Usage:
    from govreg.auth import PrincipalAuth, generate_keypair, sign_challenge

    # Caller generates a keypair (private key stays with the caller)
    private_key, public_key = generate_keypair()

    # Caller registers the public key and gets its principal id
    auth = PrincipalAuth()
    address = auth.register("validator-1", public_key)

    # Auth flow: challenge -> sign -> verify -> JWT
    challenge = auth.create_challenge(address)
    signature = sign_challenge(private_key, challenge)
    result = auth.verify_challenge(address, signature)
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Tuple, Union

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from . import config

HexLike = Union[str, bytes]


def _as_text(value: HexLike) -> str:
    return value.decode() if isinstance(value, bytes) else value


# =============================================================================
# KEY GENERATION (for callers)
# =============================================================================

def generate_keypair() -> Tuple[bytes, bytes]:
    """
    Generate an Ed25519 keypair.

    Returns:
        (private_key_hex, public_key_hex) - both as hex-encoded bytes
    """
    signing_key = SigningKey.generate()
    private_key_hex = signing_key.encode(encoder=HexEncoder)
    public_key_hex = signing_key.verify_key.encode(encoder=HexEncoder)
    return private_key_hex, public_key_hex


def public_key_for(private_key_hex: HexLike) -> bytes:
    signing_key = SigningKey(_as_text(private_key_hex).encode(), encoder=HexEncoder)
    return signing_key.verify_key.encode(encoder=HexEncoder)


def principal_from_public_key(public_key_hex: HexLike) -> str:
    """Deterministic, address-like principal id for a public key."""
    digest = hashlib.sha256(_as_text(public_key_hex).lower().encode()).hexdigest()
    return "0x" + digest[:40]


def sign_challenge(private_key_hex: HexLike, challenge: bytes) -> bytes:
    """
    Sign a challenge with the caller's private key.

    Returns:
        Signature (hex-encoded)
    """
    signing_key = SigningKey(_as_text(private_key_hex).encode(), encoder=HexEncoder)
    signed = signing_key.sign(challenge)
    return signed.signature.hex().encode()


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class Principal:
    """Registered caller identity."""
    address: str
    name: str
    public_key_hex: str
    created_at: str
    last_seen: Optional[str] = None


@dataclass
class AuthResult:
    """Result of authentication attempt."""
    success: bool
    token: Optional[str] = None
    principal: Optional[Principal] = None
    error: Optional[str] = None
    expires_at: Optional[str] = None


# =============================================================================
# PRINCIPAL AUTHENTICATION
# =============================================================================

class PrincipalAuth:
    """
    Challenge-response authentication backed by SQLite.

    Only public keys are stored. Challenges are single-use and expire after
    CHALLENGE_TTL_SECONDS; tokens expire after JWT_TTL_HOURS.
    """

    def __init__(self, db_path: Optional[Path] = None, jwt_secret_file: Optional[Path] = None):
        self.db_path = db_path or config.get_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.jwt_secret_file = jwt_secret_file or config.get_jwt_secret_file()
        self._init_db()
        self._jwt_secret = self._load_or_create_jwt_secret()

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS principals (
                    address TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    public_key_hex TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    last_seen TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS challenges (
                    address TEXT PRIMARY KEY,
                    challenge_hex TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

    def _load_or_create_jwt_secret(self) -> bytes:
        self.jwt_secret_file.parent.mkdir(parents=True, exist_ok=True)

        if self.jwt_secret_file.exists():
            return self.jwt_secret_file.read_bytes()

        secret = secrets.token_bytes(32)
        self.jwt_secret_file.write_bytes(secret)
        self.jwt_secret_file.chmod(0o600)
        return secret

    def register(self, name: str, public_key_hex: HexLike) -> str:
        """
        Register a caller's public key.

        Returns:
            Principal address (derived from the public key)

        Raises:
            ValueError: If the public key is malformed or already registered
        """
        public_key_hex = _as_text(public_key_hex).lower()
        try:
            VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        except Exception as exc:
            raise ValueError(f"Invalid Ed25519 public key: {exc}") from exc

        address = principal_from_public_key(public_key_hex)
        try:
            with self._conn() as conn:
                conn.execute("""
                    INSERT INTO principals (address, name, public_key_hex, created_at)
                    VALUES (?, ?, ?, ?)
                """, (address, name, public_key_hex, datetime.now(timezone.utc).isoformat()))
        except sqlite3.IntegrityError:
            raise ValueError(f"Principal already registered: {address}")
        return address

    def create_challenge(self, address: str) -> bytes:
        """
        Create a 32-byte challenge the caller must sign. Replaces any pending one.
        """
        with self._conn() as conn:
            row = conn.execute("SELECT address FROM principals WHERE address = ?", (address,)).fetchone()
            if not row:
                raise ValueError(f"Unknown principal: {address}")

            challenge = secrets.token_bytes(32)
            now = datetime.now(timezone.utc)
            expires = now + timedelta(seconds=config.CHALLENGE_TTL_SECONDS)
            conn.execute("""
                INSERT OR REPLACE INTO challenges (address, challenge_hex, created_at, expires_at)
                VALUES (?, ?, ?, ?)
            """, (address, challenge.hex(), now.isoformat(), expires.isoformat()))
        return challenge

    def verify_challenge(self, address: str, signature_hex: HexLike) -> AuthResult:
        """Verify the signature over the pending challenge and issue a JWT."""
        signature_hex = _as_text(signature_hex)

        with self._conn() as conn:
            row = conn.execute("""
                SELECT p.public_key_hex, c.challenge_hex, c.expires_at, p.name, p.created_at
                FROM principals p
                JOIN challenges c ON p.address = c.address
                WHERE p.address = ?
            """, (address,)).fetchone()
            if not row:
                return AuthResult(success=False, error="No pending challenge")

            public_key_hex, challenge_hex, expires_at, name, created_at = row

            # Challenges are single-use whatever the outcome
            conn.execute("DELETE FROM challenges WHERE address = ?", (address,))

            if datetime.fromisoformat(expires_at) < datetime.now(timezone.utc):
                return AuthResult(success=False, error="Challenge expired")

            try:
                verify_key = VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
                verify_key.verify(bytes.fromhex(challenge_hex), bytes.fromhex(signature_hex))
            except BadSignatureError:
                return AuthResult(success=False, error="Invalid signature")
            except ValueError as e:
                return AuthResult(success=False, error=f"Verification error: {e}")

            last_seen = datetime.now(timezone.utc).isoformat()
            conn.execute("UPDATE principals SET last_seen = ? WHERE address = ?", (last_seen, address))

        expires = datetime.now(timezone.utc) + timedelta(hours=config.JWT_TTL_HOURS)
        token = self._create_jwt(address, name, expires)
        principal = Principal(
            address=address,
            name=name,
            public_key_hex=public_key_hex,
            created_at=created_at,
            last_seen=last_seen,
        )
        return AuthResult(success=True, token=token, principal=principal, expires_at=expires.isoformat())

    def _create_jwt(self, address: str, name: str, expires_at: datetime) -> str:
        """Create simple HMAC-signed JWT."""
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {
            "sub": address,
            "name": name,
            "exp": int(expires_at.timestamp()),
            "iat": int(time.time()),
        }

        def b64url(data: bytes) -> str:
            return base64.urlsafe_b64encode(data).rstrip(b"=").decode()

        message = f"{b64url(json.dumps(header).encode())}.{b64url(json.dumps(payload).encode())}"
        signature = hmac.new(self._jwt_secret, message.encode(), hashlib.sha256).digest()
        return f"{message}.{b64url(signature)}"

    def verify_jwt(self, token: str) -> Optional[dict]:
        """Verify JWT and return payload if valid."""
        parts = token.split(".")
        if len(parts) != 3:
            return None
        header_b64, payload_b64, signature_b64 = parts

        def unpad(s: str) -> str:
            return s + "=" * (-len(s) % 4)

        try:
            expected_sig = hmac.new(
                self._jwt_secret, f"{header_b64}.{payload_b64}".encode(), hashlib.sha256
            ).digest()
            actual_sig = base64.urlsafe_b64decode(unpad(signature_b64))
            if not hmac.compare_digest(expected_sig, actual_sig):
                return None
            payload = json.loads(base64.urlsafe_b64decode(unpad(payload_b64)))
        except (ValueError, TypeError):
            return None

        if payload.get("exp", 0) < time.time():
            return None
        return payload

    def get_principal(self, address: str) -> Optional[Principal]:
        with self._conn() as conn:
            row = conn.execute("""
                SELECT address, name, public_key_hex, created_at, last_seen
                FROM principals WHERE address = ?
            """, (address,)).fetchone()
        return Principal(*row) if row else None
