"""
Governance Registry configuration: all environment-driven settings in one place.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import List

GOVREG_VERSION = "0.1.0"

# --- Storage ---
DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def get_data_dir() -> Path:
    raw = os.environ.get("GOVREG_DATA_DIR")
    return Path(raw) if raw else DEFAULT_DATA_DIR


def get_db_path() -> Path:
    raw = os.environ.get("GOVREG_DB_PATH")
    return Path(raw) if raw else get_data_dir() / "govreg.db"


def get_deployments_dir() -> Path:
    return get_data_dir() / "deployments"


def get_network() -> str:
    return os.environ.get("GOVREG_NETWORK", "local")


# --- Auth ---
def get_jwt_secret_file() -> Path:
    raw = os.environ.get("GOVREG_JWT_SECRET")
    return Path(raw) if raw else get_data_dir() / ".jwt_secret"


CHALLENGE_TTL_SECONDS = 60
JWT_TTL_HOURS = 24

# --- Logging ---
def get_log_level() -> str:
    return os.environ.get("GOVREG_LOG_LEVEL", "INFO").upper()


def get_log_json() -> bool:
    return os.environ.get("GOVREG_LOG_JSON", "false").strip().lower() in {"1", "true", "yes", "on"}


# --- Service ---
def get_cors_origins() -> List[str]:
    origins = [o.strip() for o in os.environ.get("GOVREG_CORS_ORIGINS", "").split(",") if o.strip()]
    return origins or ["http://localhost:3000", "http://localhost:5173"]  # Dev defaults


HOST = os.environ.get("GOVREG_HOST", "127.0.0.1")
PORT = int(os.environ.get("GOVREG_PORT", "8000"))
