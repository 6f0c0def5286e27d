"""Durable local key-value store.

Holds the execution-id -> persistent-id map, the per-thread set of message
ids already acknowledged by the thread service, and the per-thread file
snapshot last pushed. Values are JSON documents in a SQLite ``ItemTable``.

Every update is read-modify-write without locking; two processes working on
the same thread may overwrite each other's entries.
"""

import json
import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

THREAD_MAP_KEY = "thread-service-thread-map"
SYNCED_MESSAGES_KEY = "thread-service-synced-messages"
SYNCED_FILES_KEY = "thread-service-synced-files"


class LocalStore:
    """SQLite-backed store for sync bookkeeping."""

    def __init__(self, path: Path | str):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path)
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)"
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ── Raw access ───────────────────────────────────────────────────

    def get_raw(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM ItemTable WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        value = row[0]
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def set_raw(self, key: str, value: str) -> None:
        self._conn.execute("INSERT INTO ItemTable VALUES (?, ?)", (key, value))
        self._conn.commit()

    def remove(self, key: str) -> None:
        self._conn.execute("DELETE FROM ItemTable WHERE key = ?", (key,))
        self._conn.commit()

    def _load(self, key: str) -> dict:
        """Load a JSON object, clearing the key when its content is corrupt."""
        raw = self.get_raw(key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse %s: %s. Clearing corrupted data.", key, e)
            self.remove(key)
            return {}
        if not isinstance(data, dict):
            logger.warning("Unexpected %s content (%s). Clearing.", key, type(data).__name__)
            self.remove(key)
            return {}
        return data

    def _update(self, key: str, thread_id: str, value) -> None:
        """Read-modify-write one entry of a JSON object, starting fresh if corrupt."""
        data = self._load(key)
        data[thread_id] = value
        try:
            self.set_raw(key, json.dumps(data))
        except (TypeError, ValueError, sqlite3.Error) as e:
            logger.warning("Error persisting %s: %s", key, e)

    # ── Identity mappings ────────────────────────────────────────────

    def load_thread_map(self) -> dict[str, str]:
        return {k: v for k, v in self._load(THREAD_MAP_KEY).items() if isinstance(v, str)}

    def get_persistent_id(self, execution_id: str) -> str | None:
        return self.load_thread_map().get(execution_id)

    def get_execution_id(self, persistent_id: str) -> str | None:
        for execution_id, mapped in self.load_thread_map().items():
            if mapped == persistent_id:
                return execution_id
        return None

    def set_mapping(self, execution_id: str, persistent_id: str) -> None:
        self._update(THREAD_MAP_KEY, execution_id, persistent_id)

    # ── Synced message ids ───────────────────────────────────────────

    def load_synced_ids(self, execution_id: str) -> set[str]:
        ids = self._load(SYNCED_MESSAGES_KEY).get(execution_id) or []
        return {i for i in ids if isinstance(i, str)}

    def save_synced_ids(self, execution_id: str, ids: set[str]) -> None:
        self._update(SYNCED_MESSAGES_KEY, execution_id, sorted(ids))

    # ── Synced file snapshots ────────────────────────────────────────

    def load_synced_files(self, execution_id: str) -> dict[str, str]:
        files = self._load(SYNCED_FILES_KEY).get(execution_id)
        return dict(files) if isinstance(files, dict) else {}

    def save_synced_files(self, execution_id: str, files: dict[str, str]) -> None:
        self._update(SYNCED_FILES_KEY, execution_id, dict(files))
