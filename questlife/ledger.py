from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Protocol

from questlife.models import EQUIPMENT_SLOTS, STAT_NAMES, HeroClass, Stats, User
from questlife.store import USERS, Persister

logger = logging.getLogger(__name__)

XP_PER_LEVEL_SQUARE = 100
HP_PER_LEVEL = 5
STAMINA_PER_LEVEL = 10
WELLNESS_PER_LEVEL = 5
MANA_UNLOCK_LEVEL = 10
MANA_ON_UNLOCK = 20
MANA_PER_LEVEL = 5
CLASS_UNLOCK_LEVEL = 10
STAT_BONUS_PER_LEVEL = 1
DEATH_GOLD_PENALTY = 0.1
CONSTITUTION_DAMAGE_REDUCTION = 0.1

# class -> (primary stat, secondary stat)
CLASS_STATS = {
    HeroClass.WARRIOR: ("strength", "constitution"),
    HeroClass.MAGE: ("intelligence", "perception"),
    HeroClass.HEALER: ("constitution", "intelligence"),
    HeroClass.ROGUE: ("perception", "strength"),
}


def xp_for_level(level: int) -> int:
    return (level - 1) ** 2 * XP_PER_LEVEL_SQUARE


def level_for_xp(xp: int) -> int:
    # isqrt keeps floor(sqrt(xp / 100)) exact for large totals
    return math.isqrt(max(0, int(xp)) // XP_PER_LEVEL_SQUARE) + 1


class RewardSink(Protocol):
    """What the progress bar engine may grant for a milestone."""

    def add_gold(self, amount: int) -> None: ...

    def add_gems(self, amount: int) -> None: ...

    def apply_experience(self, amount: int) -> int: ...


class ProgressionLedger:
    """Owns the single User record and its derived-invariant arithmetic."""

    def __init__(self, user: User, persister: Persister, clock: Callable[[], datetime] = datetime.now) -> None:
        self._user = user
        self.persister = persister
        self.clock = clock

    @property
    def user(self) -> User:
        return self._user

    def snapshot(self) -> dict:
        return self._user.to_record()

    def _commit(self) -> None:
        self._user.updated_at = self.clock()
        self.persister.put(USERS, self._user.to_record())

    # Experience and leveling

    def apply_experience(self, amount: int) -> int:
        """Add experience and run one level-up step per level gained.

        Returns the number of levels gained.
        """
        if amount < 0:
            raise ValueError("experience amount must be >= 0")
        user = self._user
        user.xp += amount
        target = level_for_xp(user.xp)
        gained = 0
        while user.level < target:
            user.level += 1
            self._level_up_step(user.level)
            gained += 1
        self._commit()
        if gained:
            logger.info("Level up: %s reached level %d (+%d)", user.name, user.level, gained)
        return gained

    def _level_up_step(self, new_level: int) -> None:
        user = self._user
        user.max_hp += HP_PER_LEVEL
        user.hp = user.max_hp
        user.max_stamina += STAMINA_PER_LEVEL
        user.stamina = user.max_stamina
        user.max_wellness += WELLNESS_PER_LEVEL
        user.wellness = user.max_wellness
        if new_level == MANA_UNLOCK_LEVEL:
            user.max_mana = MANA_ON_UNLOCK
            user.mana = user.max_mana
        elif new_level > MANA_UNLOCK_LEVEL:
            user.max_mana += MANA_PER_LEVEL
            user.mana = user.max_mana
        if user.hero_class is not None:
            primary, secondary = CLASS_STATS[user.hero_class]
            setattr(user.stats, primary, getattr(user.stats, primary) + STAT_BONUS_PER_LEVEL)
            setattr(user.stats, secondary, getattr(user.stats, secondary) + STAT_BONUS_PER_LEVEL // 2)

    # Health

    def damage(self, amount: int, reason: str = "unknown") -> bool:
        """Apply damage after constitution reduction. Returns True if the hero died."""
        if amount <= 0:
            raise ValueError("damage amount must be > 0")
        reduction = math.floor(self.total_stats().constitution * CONSTITUTION_DAMAGE_REDUCTION)
        actual = max(1, amount - reduction)
        self._user.hp = max(0, self._user.hp - actual)
        logger.info("Took %d damage (%s), hp=%d", actual, reason, self._user.hp)
        if self._user.hp == 0:
            # handle_death commits, so hp 0 never reaches the store
            self.handle_death()
            return True
        self._commit()
        return False

    def handle_death(self) -> None:
        user = self._user
        gold_loss = math.floor(user.gold * DEATH_GOLD_PENALTY)
        level_loss = 1 if user.level > 1 else 0
        user.level -= level_loss
        user.xp = xp_for_level(user.level)
        user.gold = max(0, user.gold - gold_loss)
        user.current_streak = 0
        user.hp = 1
        logger.warning("Hero died: -%d gold, -%d level(s)", gold_loss, level_loss)
        self._commit()

    def heal_hp(self, amount: int) -> None:
        self._user.hp = min(self._user.hp + max(0, amount), self._user.max_hp)
        self._commit()

    # Resources

    def _spend(self, attr: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError(f"{attr} amount must be >= 0")
        balance = getattr(self._user, attr)
        if balance < amount:
            return False
        setattr(self._user, attr, balance - amount)
        self._commit()
        return True

    def spend_stamina(self, amount: int) -> bool:
        return self._spend("stamina", amount)

    def spend_mana(self, amount: int) -> bool:
        return self._spend("mana", amount)

    def spend_gold(self, amount: int) -> bool:
        return self._spend("gold", amount)

    def spend_gems(self, amount: int) -> bool:
        return self._spend("gems", amount)

    def restore_stamina(self, amount: int) -> None:
        self._user.stamina = min(self._user.stamina + max(0, amount), self._user.max_stamina)
        self._commit()

    def restore_mana(self, amount: int) -> None:
        self._user.mana = min(self._user.mana + max(0, amount), self._user.max_mana)
        self._commit()

    def update_wellness(self, delta: int) -> None:
        self._user.wellness = max(0, min(self._user.wellness + delta, self._user.max_wellness))
        self._commit()

    def add_gold(self, amount: int) -> None:
        self._user.gold += max(0, amount)
        self._commit()

    def add_gems(self, amount: int) -> None:
        self._user.gems += max(0, amount)
        self._commit()

    # Class and stats

    def unlock_class(self, hero_class: HeroClass | str) -> bool:
        hero_class = HeroClass(hero_class)
        if self._user.level < CLASS_UNLOCK_LEVEL:
            return False
        self._user.hero_class = hero_class
        self._user.class_unlocked_at = self.clock()
        self._commit()
        return True

    def change_class(self, hero_class: HeroClass | str) -> bool:
        hero_class = HeroClass(hero_class)
        if self._user.level < CLASS_UNLOCK_LEVEL:
            return False
        self._user.hero_class = hero_class
        self._commit()
        return True

    def add_stats(self, **deltas: int) -> None:
        unknown = set(deltas) - set(STAT_NAMES)
        if unknown:
            raise ValueError(f"unknown stats: {sorted(unknown)}")
        for name, delta in deltas.items():
            setattr(self._user.stats, name, getattr(self._user.stats, name) + delta)
        self._commit()

    def total_stats(self) -> Stats:
        # TODO: add equipment stat boosts once items carry them
        return Stats.from_record(self._user.stats.to_record())

    # Tracking

    def record_completion(self) -> None:
        self._user.total_quests += 1
        self._user.completed_quests += 1
        self._commit()

    def increment_streak(self) -> None:
        self._user.current_streak += 1
        self._user.longest_streak = max(self._user.longest_streak, self._user.current_streak)
        self._commit()

    def reset_streak(self) -> None:
        self._user.current_streak = 0
        self._commit()

    # Equipment slots

    def equip_item(self, slot: str, item_id: str) -> None:
        if slot not in EQUIPMENT_SLOTS:
            raise ValueError(f"unknown equipment slot: {slot}")
        self._user.equipped_items[slot] = item_id
        self._commit()

    def unequip_item(self, slot: str) -> None:
        if slot not in EQUIPMENT_SLOTS:
            raise ValueError(f"unknown equipment slot: {slot}")
        self._user.equipped_items[slot] = None
        self._commit()
