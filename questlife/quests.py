from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from questlife.errors import ErrorKind
from questlife.ledger import ProgressionLedger
from questlife.models import (
    DIFFICULTY_REWARDS,
    ONE_SHOT_TYPES,
    Difficulty,
    HistoryEntry,
    Quest,
    QuestStatus,
    QuestType,
)
from questlife.progress import ProgressBarEngine
from questlife.store import QUESTS, Persister

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"title", "description", "category", "difficulty", "deadline", "is_positive", "status", "linked_progress_bars"}


@dataclass
class CompletionResult:
    ok: bool
    error: ErrorKind | None = None
    quest: Quest | None = None
    xp_gained: int = 0
    gold_gained: int = 0
    levels_gained: int = 0
    progress_updates: list[tuple[str, HistoryEntry]] = field(default_factory=list)

    @classmethod
    def failed(cls, error: ErrorKind, quest: Quest | None = None) -> "CompletionResult":
        return cls(ok=False, error=error, quest=quest)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "error": self.error.value if self.error else None,
            "quest": self.quest.to_record() if self.quest else None,
            "xp_gained": self.xp_gained,
            "gold_gained": self.gold_gained,
            "levels_gained": self.levels_gained,
            "progress_updates": [{"bar_id": bar_id, **entry.to_record()} for bar_id, entry in self.progress_updates],
        }


class QuestEngine:
    """Owns the quest collection and drives the completion state machine."""

    def __init__(
        self,
        quests: list[Quest],
        ledger: ProgressionLedger,
        progress: ProgressBarEngine,
        persister: Persister,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._quests = {quest.id: quest for quest in quests}
        self.ledger = ledger
        self.progress = progress
        self.persister = persister
        self.clock = clock

    def _commit(self, quest: Quest) -> None:
        quest.updated_at = self.clock()
        self.persister.put(QUESTS, quest.to_record())

    def _lookup(self, quest_id: str) -> Quest | None:
        quest = self._quests.get(quest_id)
        if quest is None:
            logger.warning("Unknown quest %s", quest_id)
        return quest

    def get_quest(self, quest_id: str) -> Quest | None:
        return self._quests.get(quest_id)

    def all_quests(self) -> list[Quest]:
        return list(self._quests.values())

    def add_quest(
        self,
        title: str,
        quest_type: QuestType | str,
        difficulty: Difficulty | str,
        **options,
    ) -> Quest:
        if not title.strip():
            raise ValueError("quest title must not be empty")
        quest = Quest.new(title.strip(), quest_type, difficulty, now=self.clock(), **options)
        self._quests[quest.id] = quest
        self._commit(quest)
        return quest

    def update_quest(self, quest_id: str, **changes) -> Quest | None:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not editable: {sorted(unknown)}")
        quest = self._lookup(quest_id)
        if quest is None:
            return None
        status = QuestStatus(changes.pop("status")) if "status" in changes else None
        # completed is reached only through complete_quest and is terminal
        if status is QuestStatus.COMPLETED:
            raise ValueError("quests are completed with complete_quest, not by editing status")
        if status is not None and quest.status is QuestStatus.COMPLETED:
            raise ValueError("a completed one-shot quest cannot be reopened or archived")
        if "difficulty" in changes:
            difficulty = Difficulty(changes.pop("difficulty"))
            quest.difficulty = difficulty
            quest.xp_reward, quest.gold_reward, quest.stamina_cost = DIFFICULTY_REWARDS[difficulty]
        if status is not None:
            quest.status = status
        for name, value in changes.items():
            setattr(quest, name, value)
        self._commit(quest)
        return quest

    def archive_quest(self, quest_id: str) -> Quest | None:
        return self.update_quest(quest_id, status=QuestStatus.ARCHIVED)

    def delete_quest(self, quest_id: str) -> bool:
        if self._lookup(quest_id) is None:
            return False
        del self._quests[quest_id]
        self.persister.delete(QUESTS, quest_id)
        return True

    def complete_quest(self, quest_id: str) -> CompletionResult:
        quest = self._lookup(quest_id)
        if quest is None:
            return CompletionResult.failed(ErrorKind.ENTITY_NOT_FOUND)

        now = self.clock()
        if quest.status is not QuestStatus.ACTIVE:
            return CompletionResult.failed(ErrorKind.NOT_COMPLETABLE, quest)
        if quest.type is QuestType.DAILY and quest.completed_on(now.date()):
            return CompletionResult.failed(ErrorKind.NOT_COMPLETABLE, quest)

        if not self.ledger.spend_stamina(quest.stamina_cost):
            logger.info("Not enough stamina for %s (%d needed)", quest.title, quest.stamina_cost)
            return CompletionResult.failed(ErrorKind.INSUFFICIENT_STAMINA, quest)

        # From here on every step runs; nothing is rolled back.
        previous_streak = quest.streak
        if quest.type is QuestType.DAILY:
            yesterday = (now - timedelta(days=1)).date()
            if quest.completed_on(yesterday) or quest.streak == 0:
                quest.streak += 1
            else:
                quest.streak = 1
        quest.completed_dates.append(now)
        quest.completed_at = now
        if quest.type in ONE_SHOT_TYPES:
            quest.status = QuestStatus.COMPLETED
        self._commit(quest)

        result = CompletionResult(ok=True, quest=quest)
        result.levels_gained = self.ledger.apply_experience(quest.xp_reward)
        result.xp_gained = quest.xp_reward
        if quest.gold_reward > 0:
            self.ledger.add_gold(quest.gold_reward)
            result.gold_gained = quest.gold_reward

        self.ledger.record_completion()
        if quest.type is QuestType.DAILY and quest.streak > previous_streak:
            self.ledger.increment_streak()

        is_positive = quest.type is not QuestType.HABIT or quest.is_positive is not False
        result.progress_updates = self.progress.process_quest_completion(quest.id, quest.type, is_positive)
        logger.info("Completed %s %r: +%d xp, +%d gold", quest.type.value, quest.title, result.xp_gained, result.gold_gained)
        return result

    def filter_quests(
        self,
        quest_type: QuestType | str | None = None,
        status: QuestStatus | str | None = None,
        category: str | None = None,
        difficulty: Difficulty | str | None = None,
    ) -> list[Quest]:
        quests = self.all_quests()
        if quest_type:
            quests = [q for q in quests if q.type is QuestType(quest_type)]
        if status:
            quests = [q for q in quests if q.status is QuestStatus(status)]
        if category:
            quests = [q for q in quests if q.category == category]
        if difficulty:
            quests = [q for q in quests if q.difficulty is Difficulty(difficulty)]
        return quests

    def today_quests(self) -> list[Quest]:
        today = self.clock().date()
        return [
            q
            for q in self._quests.values()
            if q.status is QuestStatus.ACTIVE
            and (q.type is QuestType.HABIT or (q.type is QuestType.DAILY and not q.completed_on(today)))
        ]

    def upcoming_deadlines(self, limit: int = 5) -> list[Quest]:
        upcoming = [
            q
            for q in self._quests.values()
            if q.type is QuestType.TODO and q.status is QuestStatus.ACTIVE and q.deadline is not None
        ]
        upcoming.sort(key=lambda q: q.deadline)
        return upcoming[:limit]
