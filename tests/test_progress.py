from __future__ import annotations

import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

from questlife.models import QuestType, Reward, RewardType, Rule, RuleKind, TriggerType
from questlife.progress import ProgressBarEngine, should_trigger
from questlife.store import PROGRESS_BARS, Persister, RecordStore


class TriggerMatchingTests(unittest.TestCase):
    def test_trigger_table(self) -> None:
        cases = [
            (TriggerType.QUEST_COMPLETE, QuestType.TODO, True, True),
            (TriggerType.QUEST_COMPLETE, QuestType.HABIT, False, True),
            (TriggerType.DAILY_COMPLETE, QuestType.DAILY, True, True),
            (TriggerType.DAILY_COMPLETE, QuestType.TODO, True, False),
            (TriggerType.HABIT_POSITIVE, QuestType.HABIT, True, True),
            (TriggerType.HABIT_POSITIVE, QuestType.HABIT, False, False),
            (TriggerType.HABIT_NEGATIVE, QuestType.HABIT, False, True),
            (TriggerType.HABIT_NEGATIVE, QuestType.HABIT, True, False),
            (TriggerType.HABIT_NEGATIVE, QuestType.DAILY, False, False),
            (TriggerType.MANUAL, QuestType.TODO, True, False),
        ]
        for trigger, quest_type, positive, expected in cases:
            with self.subTest(trigger=trigger, quest_type=quest_type, positive=positive):
                rule = Rule(trigger_type=trigger, value=1)
                self.assertEqual(should_trigger(rule, "quest_a", quest_type, positive), expected)

    def test_task_scoped_rule_only_matches_its_quest(self) -> None:
        rule = Rule(trigger_type=TriggerType.QUEST_COMPLETE, value=1, trigger_task_id="quest_a")
        self.assertTrue(should_trigger(rule, "quest_a", "todo", True))
        self.assertFalse(should_trigger(rule, "quest_b", "todo", True))


class ProgressEngineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = RecordStore(Path(self.tmp.name) / "test.sqlite3")
        self.store.init()
        self.rewards = MagicMock()
        self.now = datetime(2026, 3, 10, 18, 0)
        self.engine = ProgressBarEngine([], self.rewards, Persister(self.store), lambda: self.now)

    def tearDown(self) -> None:
        self.tmp.cleanup()


class ValueTests(ProgressEngineTestCase):
    def test_increment_clamps_at_target_and_pays_milestone_once(self) -> None:
        bar = self.engine.create_bar("Reading", 100, current_value=95)
        self.engine.add_milestone(bar.id, 100, "Bookworm", reward=Reward(RewardType.GOLD, 50))
        self.engine.add_rule(bar.id, Rule(trigger_type=TriggerType.QUEST_COMPLETE, value=10), RuleKind.INCREMENT)

        self.engine.process_quest_completion("quest_a", QuestType.TODO)
        self.assertEqual(bar.current_value, 100)
        self.assertTrue(bar.milestones[0].achieved)
        self.assertEqual(bar.milestones[0].achieved_at, self.now)
        self.rewards.add_gold.assert_called_once_with(50)

        self.engine.update_progress_value(bar.id, -30, "slipped", TriggerType.MANUAL)
        self.engine.update_progress_value(bar.id, 30, "recovered", TriggerType.MANUAL)
        self.rewards.add_gold.assert_called_once_with(50)

    def test_value_never_drops_below_zero(self) -> None:
        bar = self.engine.create_bar("Sleep", 10, current_value=3)
        entry = self.engine.update_progress_value(bar.id, -8, "late night", TriggerType.MANUAL)

        self.assertEqual(bar.current_value, 0)
        self.assertEqual(entry.previous_value, 3)
        self.assertEqual(entry.new_value, 0)
        self.assertEqual(entry.change, -8)

    def test_create_bar_clamps_initial_value(self) -> None:
        bar = self.engine.create_bar("Water", 8, current_value=12)
        self.assertEqual(bar.current_value, 8)
        with self.assertRaises(ValueError):
            self.engine.create_bar("Broken", -1)

    def test_one_update_can_reach_several_milestones(self) -> None:
        bar = self.engine.create_bar("Steps", 100)
        self.engine.add_milestone(bar.id, 25, reward=Reward(RewardType.GEMS, 1))
        self.engine.add_milestone(bar.id, 50, reward=Reward(RewardType.XP, 40))
        self.engine.add_milestone(bar.id, 90)

        self.engine.update_progress_value(bar.id, 60, "big day", TriggerType.MANUAL)

        self.assertEqual([m.achieved for m in bar.milestones], [True, True, False])
        self.rewards.add_gems.assert_called_once_with(1)
        self.rewards.apply_experience.assert_called_once_with(40)

    def test_item_reward_is_not_granted(self) -> None:
        bar = self.engine.create_bar("Collection", 10)
        self.engine.add_milestone(bar.id, 5, reward=Reward(RewardType.ITEM, 1, item_id="item_badge"))

        entry = self.engine.update_progress_value(bar.id, 5, "found", TriggerType.MANUAL)

        self.assertEqual(entry.new_value, 5)
        self.assertTrue(bar.milestones[0].achieved)
        self.rewards.add_gold.assert_not_called()
        self.rewards.add_gems.assert_not_called()
        self.rewards.apply_experience.assert_not_called()

    def test_milestone_below_current_value_is_reached_immediately(self) -> None:
        bar = self.engine.create_bar("Savings", 100, current_value=60)
        milestone = self.engine.add_milestone(bar.id, 50, reward=Reward(RewardType.GOLD, 5))

        self.assertTrue(milestone.achieved)
        self.rewards.add_gold.assert_called_once_with(5)

    def test_set_value_records_manual_history(self) -> None:
        bar = self.engine.create_bar("Pages", 300, current_value=20)
        entry = self.engine.set_progress_value(bar.id, 120, "caught up")

        self.assertEqual(entry.change, 100)
        self.assertIs(entry.trigger_type, TriggerType.MANUAL)
        self.assertEqual(bar.history, [entry])
        stored = self.store.get(PROGRESS_BARS, bar.id)
        self.assertEqual(stored["current_value"], 120)
        self.assertEqual(stored["history"][0]["reason"], "caught up")

    def test_unknown_bar_returns_none(self) -> None:
        self.assertIsNone(self.engine.update_progress_value("missing", 1, "x", TriggerType.MANUAL))
        self.assertIsNone(self.engine.set_progress_value("missing", 1, "x"))
        self.assertFalse(self.engine.delete_bar("missing"))
        self.assertEqual(self.engine.check_milestones("missing"), [])

    def test_lowering_target_clamps_current_value(self) -> None:
        bar = self.engine.create_bar("Runs", 50, current_value=40)
        self.engine.update_bar(bar.id, target_value=30)
        self.assertEqual(bar.current_value, 30)
        with self.assertRaises(ValueError):
            self.engine.update_bar(bar.id, current_value=5)


class CascadeTests(ProgressEngineTestCase):
    def test_habit_polarity_picks_rules(self) -> None:
        bar = self.engine.create_bar(
            "Fitness",
            100,
            current_value=25,
            increment_rules=[Rule(trigger_type=TriggerType.HABIT_POSITIVE, value=5)],
            decrement_rules=[Rule(trigger_type=TriggerType.HABIT_NEGATIVE, value=-2)],
        )

        self.engine.process_quest_completion("quest_gym", QuestType.HABIT, is_positive=True)
        self.assertEqual(bar.current_value, 30)

        updates = self.engine.process_quest_completion("quest_gym", QuestType.HABIT, is_positive=False)
        self.assertEqual(bar.current_value, 28)
        self.assertEqual(len(updates), 1)
        self.assertEqual(updates[0][0], bar.id)
        self.assertIs(updates[0][1].trigger_type, TriggerType.HABIT_NEGATIVE)

    def test_every_matching_bar_is_updated(self) -> None:
        first = self.engine.create_bar("A", 10, increment_rules=[Rule(trigger_type=TriggerType.DAILY_COMPLETE, value=1)])
        second = self.engine.create_bar("B", 10, increment_rules=[Rule(trigger_type=TriggerType.QUEST_COMPLETE, value=2)])
        untouched = self.engine.create_bar("C", 10, increment_rules=[Rule(trigger_type=TriggerType.MANUAL, value=3)])

        self.engine.process_quest_completion("quest_daily", QuestType.DAILY)

        self.assertEqual((first.current_value, second.current_value, untouched.current_value), (1, 2, 0))

    def test_removed_rule_stops_firing(self) -> None:
        rule = Rule(trigger_type=TriggerType.QUEST_COMPLETE, value=1)
        bar = self.engine.create_bar("Tasks", 10)
        self.engine.add_rule(bar.id, rule, "increment")

        self.assertTrue(self.engine.remove_rule(bar.id, rule.id, "increment"))
        self.assertFalse(self.engine.remove_rule(bar.id, rule.id, "increment"))
        self.assertEqual(self.engine.process_quest_completion("quest_a", QuestType.TODO), [])


if __name__ == "__main__":
    unittest.main()
