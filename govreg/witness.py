"""
Registry Event Journal

Hash-chained, append-only copy of a registry's event log in SQLite. Each
entry references the previous entry's hash, so any edit to a stored row
breaks verification. The journal is the registry's persistence: on startup
the live registry is rebuilt by replaying ``load_events()``.

One database may hold journals for several registries; rows are keyed by the
registry address.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import get_db_path
from .events import Event, event_from_dict
from .registry import GovernanceRegistry


def _entry_hash(entry: Dict[str, Any]) -> str:
    check = {k: v for k, v in entry.items() if k not in ("hash", "id")}
    return hashlib.sha256(
        json.dumps(check, sort_keys=True, separators=(",", ":")).encode()
    ).hexdigest()


class EventJournal:
    """Hash-chained event journal for one registry."""

    def __init__(self, registry_address: str, db_path: Optional[Path] = None):
        self.registry_address = registry_address
        self.db_path = db_path or get_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
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
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS event_journal (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    registry TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    timestamp TEXT NOT NULL,
                    name TEXT NOT NULL,
                    args TEXT NOT NULL,
                    prev_hash TEXT,
                    hash TEXT NOT NULL,
                    UNIQUE(registry, seq)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_journal_registry ON event_journal(registry, seq)")

    def _last_hash(self, conn: sqlite3.Connection) -> Optional[str]:
        row = conn.execute(
            "SELECT hash FROM event_journal WHERE registry = ? ORDER BY seq DESC LIMIT 1",
            (self.registry_address,),
        ).fetchone()
        return row[0] if row else None

    def append(self, event: Event) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "registry": self.registry_address,
            "seq": event.seq,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": event.name,
            "args": event.payload(),
            "prev_hash": None,
        }
        with self._conn() as conn:
            entry["prev_hash"] = self._last_hash(conn)
            entry["hash"] = _entry_hash(entry)
            conn.execute(
                """
                INSERT INTO event_journal (registry, seq, timestamp, name, args, prev_hash, hash)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry["registry"],
                    entry["seq"],
                    entry["timestamp"],
                    entry["name"],
                    json.dumps(entry["args"], sort_keys=True),
                    entry["prev_hash"],
                    entry["hash"],
                ),
            )
        return entry

    def attach(self, registry: GovernanceRegistry) -> None:
        """Journal every event the registry commits from now on.

        The append is part of the transition: if the write fails, the
        registry call raises and its state is left unchanged.
        """
        registry.add_writer(self.append)

    def list_entries(self, limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        """Entries oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM event_journal
                WHERE registry = ?
                ORDER BY seq ASC
                LIMIT ? OFFSET ?
                """,
                (self.registry_address, -1 if limit is None else limit, offset),
            ).fetchall()
        entries = []
        for row in rows:
            entry = dict(row)
            entry["args"] = json.loads(entry["args"])
            entries.append(entry)
        return entries

    def count(self) -> int:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM event_journal WHERE registry = ?",
                (self.registry_address,),
            ).fetchone()
        return row[0] if row else 0

    def load_events(self) -> List[Event]:
        return [
            event_from_dict({"seq": e["seq"], "name": e["name"], "args": e["args"]})
            for e in self.list_entries()
        ]

    def verify_chain(self, entries: Optional[List[Dict[str, Any]]] = None) -> bool:
        """Verify no entries have been tampered with, reordered or dropped."""
        if entries is None:
            entries = self.list_entries()
        prev_hash = None
        for expected_seq, entry in enumerate(entries, start=1):
            if entry.get("seq") != expected_seq:
                return False
            if entry.get("prev_hash") != prev_hash:
                return False
            if entry.get("hash") != _entry_hash(entry):
                return False
            prev_hash = entry.get("hash")
        return True
