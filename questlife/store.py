from __future__ import annotations

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path

from questlife.errors import PersistenceError

logger = logging.getLogger(__name__)

USERS = "users"
QUESTS = "quests"
PROGRESS_BARS = "progress_bars"
SETTINGS = "settings"
REMINDERS = "reminders"

COLLECTIONS = (USERS, QUESTS, PROGRESS_BARS, SETTINGS, REMINDERS)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_json(raw: str | None, fallback=None):
    if not raw:
        return fallback
    return json.loads(raw)


class RecordStore:
    """Keyed JSON record store on a local SQLite file.

    Every call opens its own connection, so a store can be shared by the
    web workers and the scheduled jobs without holding a handle open.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)

    def get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init(self) -> None:
        try:
            conn = self.get_conn()
        except sqlite3.Error as exc:
            raise PersistenceError("init", "*", None, exc) from exc
        try:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS record (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                );
                """
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError("init", "*", None, exc) from exc
        finally:
            conn.close()

    def get(self, collection: str, record_id: str) -> dict | None:
        try:
            conn = self.get_conn()
            try:
                row = conn.execute(
                    "SELECT body_json FROM record WHERE collection = ? AND id = ?",
                    (collection, record_id),
                ).fetchone()
            finally:
                conn.close()
            return _parse_json(row["body_json"]) if row else None
        except (sqlite3.Error, ValueError) as exc:
            raise PersistenceError("get", collection, record_id, exc) from exc

    def get_all(self, collection: str) -> list[dict]:
        try:
            conn = self.get_conn()
            try:
                rows = conn.execute(
                    "SELECT body_json FROM record WHERE collection = ? ORDER BY rowid",
                    (collection,),
                ).fetchall()
            finally:
                conn.close()
            return [_parse_json(row["body_json"], {}) for row in rows]
        except (sqlite3.Error, ValueError) as exc:
            raise PersistenceError("get_all", collection, None, exc) from exc

    def put(self, collection: str, record: dict) -> None:
        record_id = record.get("id")
        if not record_id:
            raise ValueError(f"record for {collection} has no id")
        try:
            conn = self.get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO record (collection, id, body_json, updated_at) VALUES (?, ?, ?, ?)
                    ON CONFLICT(collection, id) DO UPDATE SET body_json=excluded.body_json, updated_at=excluded.updated_at
                    """,
                    (collection, record_id, json.dumps(record), utc_now_iso()),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError("put", collection, record_id, exc) from exc

    def delete(self, collection: str, record_id: str) -> None:
        try:
            conn = self.get_conn()
            try:
                conn.execute("DELETE FROM record WHERE collection = ? AND id = ?", (collection, record_id))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError("delete", collection, record_id, exc) from exc

    def export_data(self) -> dict:
        return {collection: self.get_all(collection) for collection in COLLECTIONS}

    def import_data(self, payload: dict) -> None:
        try:
            conn = self.get_conn()
            try:
                for collection in COLLECTIONS:
                    rows = payload.get(collection)
                    if rows is None:
                        continue
                    conn.execute("DELETE FROM record WHERE collection = ?", (collection,))
                    for row in rows:
                        if not row.get("id"):
                            raise ValueError(f"record for {collection} has no id")
                        conn.execute(
                            "INSERT INTO record (collection, id, body_json, updated_at) VALUES (?, ?, ?, ?)",
                            (collection, row["id"], json.dumps(row), utc_now_iso()),
                        )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError("import", "*", None, exc) from exc


class Persister:
    """Writes owner records through to the store.

    A write that still fails after ``max_attempts`` is logged, parked in
    ``pending`` for :meth:`flush`, and appended to ``failures`` so the running
    operation can report that its change may not be durable. In-memory state
    is never reverted.
    """

    max_attempts = 3
    retry_delay_s = 0.05

    def __init__(self, store: RecordStore, max_attempts: int | None = None) -> None:
        self.store = store
        if max_attempts is not None:
            self.max_attempts = max(1, max_attempts)
        self.pending: dict[tuple[str, str], dict | None] = {}
        self.failures: list[PersistenceError] = []

    def _attempt(self, action, collection: str, record_id: str) -> PersistenceError | None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                action()
                return None
            except PersistenceError as exc:
                if attempt >= self.max_attempts:
                    logger.warning("Giving up on %s/%s after %d attempts: %s", collection, record_id, attempt, exc)
                    return exc
                time.sleep(self.retry_delay_s * attempt)
        return None

    def put(self, collection: str, record: dict) -> bool:
        key = (collection, record["id"])
        error = self._attempt(lambda: self.store.put(collection, record), collection, record["id"])
        if error is None:
            self.pending.pop(key, None)
            return True
        self.pending[key] = record
        self.failures.append(error)
        return False

    def delete(self, collection: str, record_id: str) -> bool:
        key = (collection, record_id)
        error = self._attempt(lambda: self.store.delete(collection, record_id), collection, record_id)
        if error is None:
            self.pending.pop(key, None)
            return True
        self.pending[key] = None
        self.failures.append(error)
        return False

    def flush(self) -> bool:
        """Retry every parked write once per attempt budget; True when nothing is left."""
        for (collection, record_id), record in list(self.pending.items()):
            if record is None:
                self.delete(collection, record_id)
            else:
                self.put(collection, record)
        if self.pending:
            logger.warning("%d record(s) still not durable", len(self.pending))
        return not self.pending

    def drain_failures(self) -> list[PersistenceError]:
        failures, self.failures = self.failures, []
        return failures
