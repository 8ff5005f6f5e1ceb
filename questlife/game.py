from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Iterator

from questlife.content import starter_progress_bars
from questlife.errors import PersistenceError
from questlife.ledger import ProgressionLedger
from questlife.models import ProgressBar, Quest, User
from questlife.progress import ProgressBarEngine
from questlife.quests import QuestEngine
from questlife.store import COLLECTIONS, PROGRESS_BARS, QUESTS, REMINDERS, SETTINGS, USERS, Persister, RecordStore

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "default"

DEFAULT_SETTINGS = {
    "id": "default",
    "notifications_enabled": True,
    "reminder_time": "09:00",
    "discord_webhook_url": "",
    "ntfy_topic_url": "",
}

_REMINDER_TIME = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass
class Operation:
    persistence_errors: list[PersistenceError] = field(default_factory=list)

    @property
    def durable(self) -> bool:
        return not self.persistence_errors

    def report(self) -> list[dict]:
        return [error.to_dict() for error in self.persistence_errors]


SAVE_PARSERS = {
    USERS: User.from_record,
    QUESTS: Quest.from_record,
    PROGRESS_BARS: ProgressBar.from_record,
}


def validate_save(payload) -> None:
    """Raise ValueError unless every row of an exported save can be loaded back."""
    if not isinstance(payload, dict):
        raise ValueError("save data must be a JSON object")
    for collection in COLLECTIONS:
        rows = payload.get(collection)
        if rows is None:
            continue
        if not isinstance(rows, list):
            raise ValueError(f"{collection} must be a list of records")
        for index, row in enumerate(rows):
            if not isinstance(row, dict) or not row.get("id"):
                raise ValueError(f"{collection}[{index}] is not a record with an id")
            parse = SAVE_PARSERS.get(collection)
            try:
                if parse is not None:
                    parse(row)
            except (KeyError, TypeError, AttributeError, ValueError) as exc:
                raise ValueError(f"{collection}[{index}] is invalid: {exc!r}") from exc
            if collection == SETTINGS and not _REMINDER_TIME.match(str(row.get("reminder_time", "09:00"))):
                raise ValueError(f"{collection}[{index}] has a bad reminder_time")


class Game:
    """Wires the record store and the three engines for one installation.

    Build it once at process start and hand it to whoever needs it. Run
    every mutation inside :meth:`operation` so cascades never interleave.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        clock: Callable[[], datetime] = datetime.now,
        persist_attempts: int = 3,
        starter_pack: str | None = "starter_bars",
    ) -> None:
        self.store = store
        self.clock = clock
        self.starter_pack = starter_pack
        self.persister = Persister(store, max_attempts=persist_attempts)
        self._lock = threading.RLock()
        self.ledger: ProgressionLedger | None = None
        self.progress: ProgressBarEngine | None = None
        self.quests: QuestEngine | None = None

    @classmethod
    def open(cls, db_path: Path | str, **options) -> "Game":
        game = cls(RecordStore(db_path), **options)
        game.load()
        return game

    def load(self) -> None:
        with self._lock:
            self.store.init()
            now = self.clock()
            raw_user = self.store.get(USERS, DEFAULT_USER_ID)
            first_launch = raw_user is None
            if first_launch:
                user = User(id=DEFAULT_USER_ID, created_at=now, updated_at=now)
            else:
                user = User.from_record(raw_user)

            bars = [ProgressBar.from_record(raw) for raw in self.store.get_all(PROGRESS_BARS)]
            quests = [Quest.from_record(raw) for raw in self.store.get_all(QUESTS)]

            # the three engines must share one ledger
            ledger = ProgressionLedger(user, self.persister, self.clock)
            progress = ProgressBarEngine(bars, ledger, self.persister, self.clock)
            self.ledger = ledger
            self.progress = progress
            self.quests = QuestEngine(quests, ledger, progress, self.persister, self.clock)

            if first_launch:
                logger.info("First launch: creating default user and starter progress bars")
                self.persister.put(USERS, user.to_record())
                starter = starter_progress_bars(self.starter_pack) if self.starter_pack else []
                for bar in starter:
                    bar.created_at = now
                    self.progress.adopt(bar)

    @contextmanager
    def operation(self) -> Iterator[Operation]:
        with self._lock:
            if self.persister.pending:
                self.persister.flush()
            # failures from earlier work were already reported
            self.persister.drain_failures()
            op = Operation()
            try:
                yield op
            finally:
                op.persistence_errors = self.persister.drain_failures()
                if op.persistence_errors:
                    logger.warning("Operation finished with %d write failure(s)", len(op.persistence_errors))

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "user": self.ledger.snapshot(),
                "quests": [quest.to_record() for quest in self.quests.all_quests()],
                "progress_bars": [bar.to_record() for bar in self.progress.all_bars()],
            }

    def flush(self) -> bool:
        with self._lock:
            return self.persister.flush()

    def export_data(self) -> dict:
        with self._lock:
            self.persister.flush()
            return self.store.export_data()

    def import_data(self, payload: dict) -> None:
        """Replace the saved collections with ``payload`` and reload.

        Every row is parsed before anything is written, so a rejected save
        leaves the store and the running engines untouched.
        """
        validate_save(payload)
        with self._lock:
            self.store.import_data(payload)
            self.persister.pending.clear()
            self.load()

    # Settings and reminder bookkeeping live next to the core records.

    def settings(self) -> dict:
        raw = self.store.get(SETTINGS, DEFAULT_SETTINGS["id"]) or {}
        return {**DEFAULT_SETTINGS, **raw}

    def update_settings(self, **changes) -> dict:
        unknown = set(changes) - (set(DEFAULT_SETTINGS) - {"id"})
        if unknown:
            raise ValueError(f"unknown settings: {sorted(unknown)}")
        reminder_time = changes.get("reminder_time")
        if reminder_time is not None and not _REMINDER_TIME.match(reminder_time):
            raise ValueError("reminder_time must look like HH:MM")
        with self._lock:
            settings = {**self.settings(), **changes}
            for key in ("discord_webhook_url", "ntfy_topic_url"):
                settings[key] = (settings.get(key) or "").strip()
            settings["notifications_enabled"] = bool(settings["notifications_enabled"])
            self.persister.put(SETTINGS, settings)
            return settings

    def was_reminder_sent(self, kind: str, for_date: date) -> bool:
        return self.store.get(REMINDERS, f"{kind}:{for_date.isoformat()}") is not None

    def mark_reminder_sent(self, kind: str, for_date: date) -> None:
        self.persister.put(
            REMINDERS,
            {"id": f"{kind}:{for_date.isoformat()}", "kind": kind, "date": for_date.isoformat(), "sent_at": self.clock().isoformat()},
        )
