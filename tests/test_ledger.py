from __future__ import annotations

import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from questlife.ledger import ProgressionLedger, level_for_xp, xp_for_level
from questlife.models import HeroClass, Stats, User
from questlife.store import USERS, Persister, RecordStore


class LevelFormulaTests(unittest.TestCase):
    def test_xp_for_level_is_quadratic(self) -> None:
        self.assertEqual(xp_for_level(1), 0)
        self.assertEqual(xp_for_level(2), 100)
        self.assertEqual(xp_for_level(3), 400)
        self.assertEqual(xp_for_level(10), 8100)

    def test_level_for_xp_is_largest_reached_level(self) -> None:
        self.assertEqual(level_for_xp(0), 1)
        self.assertEqual(level_for_xp(99), 1)
        self.assertEqual(level_for_xp(100), 2)
        self.assertEqual(level_for_xp(250), 2)
        self.assertEqual(level_for_xp(399), 2)
        self.assertEqual(level_for_xp(400), 3)
        for level in range(1, 60):
            self.assertEqual(level_for_xp(xp_for_level(level)), level)
            self.assertEqual(level_for_xp(xp_for_level(level + 1) - 1), level)


class LedgerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = RecordStore(Path(self.tmp.name) / "test.sqlite3")
        self.store.init()
        self.persister = Persister(self.store)
        self.now = datetime(2026, 3, 10, 8, 30)
        self.ledger = ProgressionLedger(User(), self.persister, lambda: self.now)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    @property
    def user(self) -> User:
        return self.ledger.user

    def stored_user(self) -> dict:
        return self.store.get(USERS, "default")


class ExperienceTests(LedgerTestCase):
    def test_single_level_up_restores_and_grows_pools(self) -> None:
        self.user.hp = 10
        gained = self.ledger.apply_experience(250)

        self.assertEqual(gained, 1)
        self.assertEqual(self.user.level, 2)
        self.assertEqual(self.user.xp, 250)
        self.assertEqual(self.user.max_hp, 55)
        self.assertEqual(self.user.hp, 55)
        self.assertEqual(self.user.max_stamina, 110)
        self.assertEqual(self.user.stamina, 110)
        self.assertEqual(self.user.max_wellness, 105)
        self.assertEqual(self.stored_user()["level"], 2)

    def test_large_award_runs_one_step_per_level(self) -> None:
        gained = self.ledger.apply_experience(xp_for_level(5))

        self.assertEqual(gained, 4)
        self.assertEqual(self.user.level, 5)
        self.assertEqual(self.user.max_hp, 50 + 4 * 5)
        self.assertEqual(self.user.max_stamina, 100 + 4 * 10)

    def test_below_threshold_keeps_level(self) -> None:
        self.assertEqual(self.ledger.apply_experience(99), 0)
        self.assertEqual(self.user.level, 1)
        self.assertEqual(self.user.xp, 99)

    def test_negative_experience_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.ledger.apply_experience(-5)

    def test_mana_unlocks_at_level_ten_then_grows(self) -> None:
        self.ledger.apply_experience(xp_for_level(9))
        self.assertEqual(self.user.max_mana, 0)

        self.ledger.apply_experience(xp_for_level(10) - self.user.xp)
        self.assertEqual(self.user.level, 10)
        self.assertEqual(self.user.max_mana, 20)
        self.assertEqual(self.user.mana, 20)

        self.ledger.apply_experience(xp_for_level(12) - self.user.xp)
        self.assertEqual(self.user.max_mana, 30)
        self.assertEqual(self.user.mana, 30)

    def test_class_bonus_applies_on_level_up(self) -> None:
        self.user.hero_class = HeroClass.WARRIOR
        self.ledger.apply_experience(xp_for_level(3))

        self.assertEqual(self.user.stats.strength, 2)
        # secondary bonus is half a point per level, floored
        self.assertEqual(self.user.stats.constitution, 0)
        self.assertEqual(self.user.stats.intelligence, 0)


class DamageTests(LedgerTestCase):
    def test_constitution_reduces_damage(self) -> None:
        self.user.stats = Stats(constitution=20)
        died = self.ledger.damage(10, "missed daily")

        self.assertFalse(died)
        self.assertEqual(self.user.hp, 42)

    def test_damage_is_at_least_one(self) -> None:
        self.user.stats = Stats(constitution=200)
        self.ledger.damage(3)
        self.assertEqual(self.user.hp, 49)

    def test_lethal_damage_triggers_death_penalties(self) -> None:
        self.ledger.apply_experience(xp_for_level(3) + 50)
        self.user.hp = 3
        self.user.gold = 105
        self.user.current_streak = 4
        self.user.longest_streak = 6
        self.user.stats = Stats(constitution=20)

        died = self.ledger.damage(10)

        self.assertTrue(died)
        self.assertEqual(self.user.hp, 1)
        self.assertEqual(self.user.gold, 95)
        self.assertEqual(self.user.level, 2)
        self.assertEqual(self.user.xp, xp_for_level(2))
        self.assertEqual(self.user.current_streak, 0)
        self.assertEqual(self.user.longest_streak, 6)
        self.assertEqual(self.stored_user()["hp"], 1)

    def test_death_at_level_one_keeps_level(self) -> None:
        self.user.hp = 1
        self.assertTrue(self.ledger.damage(5))
        self.assertEqual(self.user.level, 1)
        self.assertEqual(self.user.xp, 0)
        self.assertEqual(self.user.hp, 1)

    def test_heal_clamps_at_max(self) -> None:
        self.user.hp = 40
        self.ledger.heal_hp(30)
        self.assertEqual(self.user.hp, 50)


class ResourceTests(LedgerTestCase):
    def test_spend_fails_without_changes_when_short(self) -> None:
        self.user.gold = 5
        self.assertFalse(self.ledger.spend_gold(6))
        self.assertEqual(self.user.gold, 5)
        self.assertIsNone(self.stored_user())

    def test_spend_and_restore(self) -> None:
        self.assertTrue(self.ledger.spend_stamina(30))
        self.assertEqual(self.user.stamina, 70)
        self.ledger.restore_stamina(500)
        self.assertEqual(self.user.stamina, 100)

    def test_wellness_stays_within_bounds(self) -> None:
        self.ledger.update_wellness(-150)
        self.assertEqual(self.user.wellness, 0)
        self.ledger.update_wellness(250)
        self.assertEqual(self.user.wellness, 100)

    def test_mana_restore_respects_locked_pool(self) -> None:
        self.ledger.restore_mana(10)
        self.assertEqual(self.user.mana, 0)
        self.assertFalse(self.ledger.spend_mana(1))

    def test_currencies_accumulate(self) -> None:
        self.ledger.add_gold(12)
        self.ledger.add_gems(3)
        self.assertTrue(self.ledger.spend_gems(3))
        self.assertEqual((self.user.gold, self.user.gems), (12, 0))


class ClassAndStreakTests(LedgerTestCase):
    def test_class_requires_level_ten(self) -> None:
        self.assertFalse(self.ledger.unlock_class("mage"))
        self.assertIsNone(self.user.hero_class)

        self.ledger.apply_experience(xp_for_level(10))
        self.assertTrue(self.ledger.unlock_class("mage"))
        self.assertIs(self.user.hero_class, HeroClass.MAGE)
        self.assertEqual(self.user.class_unlocked_at, self.now)

        self.assertTrue(self.ledger.change_class(HeroClass.ROGUE))
        self.assertEqual(self.stored_user()["hero_class"], "rogue")

    def test_unknown_class_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.ledger.unlock_class("bard")

    def test_longest_streak_is_a_high_water_mark(self) -> None:
        for _ in range(3):
            self.ledger.increment_streak()
        self.ledger.reset_streak()
        self.ledger.increment_streak()

        self.assertEqual(self.user.current_streak, 1)
        self.assertEqual(self.user.longest_streak, 3)

    def test_equipment_slots(self) -> None:
        self.ledger.equip_item("weapon", "item_sword")
        self.assertEqual(self.user.equipped_items["weapon"], "item_sword")
        self.ledger.unequip_item("weapon")
        self.assertIsNone(self.user.equipped_items["weapon"])
        with self.assertRaises(ValueError):
            self.ledger.equip_item("hat", "item_hat")

    def test_add_stats_rejects_unknown_names(self) -> None:
        self.ledger.add_stats(strength=2)
        self.assertEqual(self.ledger.total_stats().strength, 2)
        with self.assertRaises(ValueError):
            self.ledger.add_stats(luck=1)


if __name__ == "__main__":
    unittest.main()
