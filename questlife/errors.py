from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INSUFFICIENT_STAMINA = "insufficient_stamina"
    INSUFFICIENT_CURRENCY = "insufficient_currency"
    ENTITY_NOT_FOUND = "entity_not_found"
    NOT_COMPLETABLE = "not_completable"
    PERSISTENCE_FAILURE = "persistence_failure"


class PersistenceError(Exception):
    """The record store rejected a read or a write."""

    def __init__(self, action: str, collection: str, record_id: str | None, cause: Exception | None = None) -> None:
        self.action = action
        self.collection = collection
        self.record_id = record_id
        self.cause = cause
        target = f"{collection}/{record_id}" if record_id else collection
        super().__init__(f"{action} {target} failed: {cause}")

    def to_dict(self) -> dict:
        return {
            "error": ErrorKind.PERSISTENCE_FAILURE.value,
            "action": self.action,
            "collection": self.collection,
            "id": self.record_id,
            "detail": str(self.cause) if self.cause else None,
        }
