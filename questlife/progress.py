from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from questlife.ledger import RewardSink
from questlife.models import (
    HistoryEntry,
    Milestone,
    ProgressBar,
    QuestType,
    Reward,
    RewardType,
    Rule,
    RuleKind,
    TriggerType,
    new_id,
)
from questlife.store import PROGRESS_BARS, Persister

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"name", "description", "icon", "color", "category", "visualization_type", "target_value"}


def _clamp(value: float, target: float) -> float:
    return max(0, min(target, value))


def should_trigger(rule: Rule, quest_id: str, quest_type: QuestType | str, is_positive: bool) -> bool:
    quest_type = QuestType(quest_type)
    matches_task = rule.trigger_task_id is None or rule.trigger_task_id == quest_id
    if rule.trigger_type is TriggerType.QUEST_COMPLETE:
        return matches_task
    if rule.trigger_type is TriggerType.DAILY_COMPLETE:
        return quest_type is QuestType.DAILY and matches_task
    if rule.trigger_type is TriggerType.HABIT_POSITIVE:
        return quest_type is QuestType.HABIT and is_positive and matches_task
    if rule.trigger_type is TriggerType.HABIT_NEGATIVE:
        return quest_type is QuestType.HABIT and not is_positive and matches_task
    if rule.trigger_type is TriggerType.MANUAL:
        return False
    raise AssertionError(f"unhandled trigger type {rule.trigger_type!r}")


class ProgressBarEngine:
    """Owns the custom progress bars and turns quest events into value changes."""

    def __init__(
        self,
        bars: list[ProgressBar],
        rewards: RewardSink,
        persister: Persister,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._bars = {bar.id: bar for bar in bars}
        self.rewards = rewards
        self.persister = persister
        self.clock = clock

    def _commit(self, bar: ProgressBar) -> None:
        bar.updated_at = self.clock()
        self.persister.put(PROGRESS_BARS, bar.to_record())

    def _lookup(self, bar_id: str) -> ProgressBar | None:
        bar = self._bars.get(bar_id)
        if bar is None:
            logger.warning("Unknown progress bar %s", bar_id)
        return bar

    def get_bar(self, bar_id: str) -> ProgressBar | None:
        return self._bars.get(bar_id)

    def all_bars(self) -> list[ProgressBar]:
        return list(self._bars.values())

    def bars_by_category(self) -> dict[str, list[ProgressBar]]:
        grouped: dict[str, list[ProgressBar]] = {}
        for bar in self._bars.values():
            grouped.setdefault(bar.category, []).append(bar)
        return grouped

    def create_bar(
        self,
        name: str,
        target_value: float,
        *,
        current_value: float = 0,
        description: str = "",
        icon: str = "",
        color: str = "#3B82F6",
        category: str = "general",
        visualization_type: str = "bar",
        increment_rules: list[Rule] | None = None,
        decrement_rules: list[Rule] | None = None,
        milestones: list[Milestone] | None = None,
    ) -> ProgressBar:
        if target_value < 0:
            raise ValueError("target_value must be >= 0")
        now = self.clock()
        bar = ProgressBar(
            id=new_id("progress"),
            name=name,
            description=description,
            icon=icon,
            color=color,
            category=category or "general",
            visualization_type=visualization_type,
            current_value=_clamp(current_value, target_value),
            target_value=target_value,
            increment_rules=list(increment_rules or []),
            decrement_rules=list(decrement_rules or []),
            milestones=list(milestones or []),
            created_at=now,
            updated_at=now,
        )
        self._bars[bar.id] = bar
        self._commit(bar)
        return bar

    def adopt(self, bar: ProgressBar) -> ProgressBar:
        """Register a fully built bar (starter packs, imports) and persist it."""
        bar.current_value = _clamp(bar.current_value, bar.target_value)
        self._bars[bar.id] = bar
        self._commit(bar)
        return bar

    def update_bar(self, bar_id: str, **changes) -> ProgressBar | None:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not editable: {sorted(unknown)}")
        bar = self._lookup(bar_id)
        if bar is None:
            return None
        if changes.get("target_value", bar.target_value) < 0:
            raise ValueError("target_value must be >= 0")
        for name, value in changes.items():
            setattr(bar, name, value)
        bar.current_value = _clamp(bar.current_value, bar.target_value)
        self._commit(bar)
        self.check_milestones(bar_id)
        return bar

    def delete_bar(self, bar_id: str) -> bool:
        if self._lookup(bar_id) is None:
            return False
        del self._bars[bar_id]
        self.persister.delete(PROGRESS_BARS, bar_id)
        return True

    def add_rule(self, bar_id: str, rule: Rule, kind: RuleKind | str) -> Rule | None:
        bar = self._lookup(bar_id)
        if bar is None:
            return None
        bar.rules(RuleKind(kind)).append(rule)
        self._commit(bar)
        return rule

    def remove_rule(self, bar_id: str, rule_id: str, kind: RuleKind | str) -> bool:
        bar = self._lookup(bar_id)
        if bar is None:
            return False
        rules = bar.rules(RuleKind(kind))
        kept = [rule for rule in rules if rule.id != rule_id]
        if len(kept) == len(rules):
            logger.warning("Unknown rule %s on progress bar %s", rule_id, bar_id)
            return False
        rules[:] = kept
        self._commit(bar)
        return True

    def add_milestone(
        self,
        bar_id: str,
        value: float,
        title: str = "",
        description: str = "",
        reward: Reward | None = None,
    ) -> Milestone | None:
        bar = self._lookup(bar_id)
        if bar is None:
            return None
        milestone = Milestone(value=value, title=title, description=description, reward=reward)
        bar.milestones.append(milestone)
        self._commit(bar)
        # a milestone added below the current value is reached right away
        self.check_milestones(bar_id)
        return milestone

    def update_progress_value(
        self,
        bar_id: str,
        change: float,
        reason: str,
        trigger_type: TriggerType | str,
    ) -> HistoryEntry | None:
        bar = self._lookup(bar_id)
        if bar is None:
            return None
        previous = bar.current_value
        bar.current_value = _clamp(previous + change, bar.target_value)
        entry = HistoryEntry(
            previous_value=previous,
            new_value=bar.current_value,
            change=change,
            reason=reason,
            trigger_type=TriggerType(trigger_type),
            date=self.clock(),
        )
        bar.history.append(entry)
        self._commit(bar)
        self.check_milestones(bar_id)
        return entry

    def set_progress_value(self, bar_id: str, value: float, reason: str) -> HistoryEntry | None:
        bar = self._lookup(bar_id)
        if bar is None:
            return None
        return self.update_progress_value(bar_id, value - bar.current_value, reason, TriggerType.MANUAL)

    def check_milestones(self, bar_id: str) -> list[Milestone]:
        bar = self._lookup(bar_id)
        if bar is None:
            return []
        reached = [m for m in bar.milestones if not m.achieved and bar.current_value >= m.value]
        if not reached:
            return []
        now = self.clock()
        for milestone in reached:
            milestone.achieved = True
            milestone.achieved_at = now
        # persist the flags before paying out so a reward is never granted twice
        self._commit(bar)
        for milestone in reached:
            logger.info("Milestone reached on %s: %s (%s)", bar.name, milestone.title, milestone.value)
            if milestone.reward is not None:
                self._grant(milestone.reward)
        return reached

    def _grant(self, reward: Reward) -> None:
        if reward.type is RewardType.GOLD:
            self.rewards.add_gold(reward.amount)
        elif reward.type is RewardType.GEMS:
            self.rewards.add_gems(reward.amount)
        elif reward.type is RewardType.XP:
            self.rewards.apply_experience(reward.amount)
        elif reward.type is RewardType.ITEM:
            # no inventory yet
            logger.info("Item reward %s not granted: no inventory", reward.item_id)
        else:
            raise AssertionError(f"unhandled reward type {reward.type!r}")

    def process_quest_completion(
        self,
        quest_id: str,
        quest_type: QuestType | str,
        is_positive: bool = True,
    ) -> list[tuple[str, HistoryEntry]]:
        applied = []
        for bar in list(self._bars.values()):
            for rule in [*bar.increment_rules, *bar.decrement_rules]:
                if should_trigger(rule, quest_id, quest_type, is_positive):
                    entry = self.update_progress_value(bar.id, rule.value, rule.description, rule.trigger_type)
                    if entry is not None:
                        applied.append((bar.id, entry))
        return applied
