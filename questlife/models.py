from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class QuestType(str, Enum):
    DAILY = "daily"
    HABIT = "habit"
    TODO = "todo"
    REWARD = "reward"


class Difficulty(str, Enum):
    TRIVIAL = "trivial"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class HeroClass(str, Enum):
    WARRIOR = "warrior"
    MAGE = "mage"
    HEALER = "healer"
    ROGUE = "rogue"


class TriggerType(str, Enum):
    QUEST_COMPLETE = "quest_complete"
    DAILY_COMPLETE = "daily_complete"
    HABIT_POSITIVE = "habit_positive"
    HABIT_NEGATIVE = "habit_negative"
    MANUAL = "manual"


class RewardType(str, Enum):
    GOLD = "gold"
    GEMS = "gems"
    XP = "xp"
    ITEM = "item"


class RuleKind(str, Enum):
    INCREMENT = "increment"
    DECREMENT = "decrement"


# difficulty -> (xp_reward, gold_reward, stamina_cost)
DIFFICULTY_REWARDS = {
    Difficulty.TRIVIAL: (5, 1, 5),
    Difficulty.EASY: (10, 2, 10),
    Difficulty.MEDIUM: (25, 5, 20),
    Difficulty.HARD: (50, 10, 35),
}

# Quest types whose completion is terminal.
ONE_SHOT_TYPES = frozenset({QuestType.TODO, QuestType.REWARD})

EQUIPMENT_SLOTS = ("weapon", "armor", "accessory", "pet", "mount")

STAT_NAMES = ("strength", "intelligence", "constitution", "perception")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(raw: str | datetime | None) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(raw)


@dataclass
class Stats:
    strength: int = 0
    intelligence: int = 0
    constitution: int = 0
    perception: int = 0

    def to_record(self) -> dict:
        return {name: getattr(self, name) for name in STAT_NAMES}

    @classmethod
    def from_record(cls, raw: dict | None) -> "Stats":
        raw = raw or {}
        return cls(**{name: int(raw.get(name, 0)) for name in STAT_NAMES})


@dataclass
class User:
    id: str = "default"
    name: str = "Adventurer"
    description: str = "Ready to embark on life quests!"
    xp: int = 0
    level: int = 1
    hp: int = 50
    max_hp: int = 50
    mana: int = 0
    max_mana: int = 0
    gold: int = 0
    gems: int = 0
    stamina: int = 100
    max_stamina: int = 100
    wellness: int = 100
    max_wellness: int = 100
    hero_class: HeroClass | None = None
    class_unlocked_at: datetime | None = None
    stats: Stats = field(default_factory=Stats)
    current_streak: int = 0
    longest_streak: int = 0
    total_quests: int = 0
    completed_quests: int = 0
    equipped_items: dict = field(default_factory=lambda: {slot: None for slot in EQUIPMENT_SLOTS})
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "xp": self.xp,
            "level": self.level,
            "hp": self.hp,
            "max_hp": self.max_hp,
            "mana": self.mana,
            "max_mana": self.max_mana,
            "gold": self.gold,
            "gems": self.gems,
            "stamina": self.stamina,
            "max_stamina": self.max_stamina,
            "wellness": self.wellness,
            "max_wellness": self.max_wellness,
            "hero_class": self.hero_class.value if self.hero_class else None,
            "class_unlocked_at": _iso(self.class_unlocked_at),
            "stats": self.stats.to_record(),
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "total_quests": self.total_quests,
            "completed_quests": self.completed_quests,
            "equipped_items": dict(self.equipped_items),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, raw: dict) -> "User":
        defaults = cls()
        equipped = {slot: None for slot in EQUIPMENT_SLOTS}
        equipped.update(raw.get("equipped_items") or {})
        return cls(
            id=raw.get("id", defaults.id),
            name=raw.get("name", defaults.name),
            description=raw.get("description", defaults.description),
            xp=int(raw.get("xp", 0)),
            level=int(raw.get("level", 1)),
            hp=int(raw.get("hp", defaults.hp)),
            max_hp=int(raw.get("max_hp", defaults.max_hp)),
            mana=int(raw.get("mana", 0)),
            max_mana=int(raw.get("max_mana", 0)),
            gold=int(raw.get("gold", 0)),
            gems=int(raw.get("gems", 0)),
            stamina=int(raw.get("stamina", defaults.stamina)),
            max_stamina=int(raw.get("max_stamina", defaults.max_stamina)),
            wellness=int(raw.get("wellness", defaults.wellness)),
            max_wellness=int(raw.get("max_wellness", defaults.max_wellness)),
            hero_class=HeroClass(raw["hero_class"]) if raw.get("hero_class") else None,
            class_unlocked_at=_dt(raw.get("class_unlocked_at")),
            stats=Stats.from_record(raw.get("stats")),
            current_streak=int(raw.get("current_streak", 0)),
            longest_streak=int(raw.get("longest_streak", 0)),
            total_quests=int(raw.get("total_quests", 0)),
            completed_quests=int(raw.get("completed_quests", 0)),
            equipped_items=equipped,
            created_at=_dt(raw.get("created_at")),
            updated_at=_dt(raw.get("updated_at")),
        )


@dataclass
class Quest:
    id: str
    title: str
    type: QuestType
    difficulty: Difficulty
    xp_reward: int
    gold_reward: int
    stamina_cost: int
    category: str = "general"
    description: str = ""
    mana_reward: int = 0
    status: QuestStatus = QuestStatus.ACTIVE
    deadline: datetime | None = None
    completed_at: datetime | None = None
    completed_dates: list[datetime] = field(default_factory=list)
    streak: int = 0
    is_positive: bool | None = None
    linked_progress_bars: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def new(
        cls,
        title: str,
        quest_type: QuestType | str,
        difficulty: Difficulty | str,
        *,
        category: str = "general",
        description: str = "",
        deadline: datetime | None = None,
        is_positive: bool | None = None,
        linked_progress_bars: list[str] | None = None,
        now: datetime | None = None,
    ) -> "Quest":
        difficulty = Difficulty(difficulty)
        xp, gold, stamina = DIFFICULTY_REWARDS[difficulty]
        return cls(
            id=new_id("quest"),
            title=title,
            type=QuestType(quest_type),
            difficulty=difficulty,
            xp_reward=xp,
            gold_reward=gold,
            stamina_cost=stamina,
            category=category or "general",
            description=description,
            deadline=deadline,
            is_positive=is_positive,
            linked_progress_bars=list(linked_progress_bars or []),
            created_at=now,
            updated_at=now,
        )

    def completed_on(self, day) -> bool:
        return any(stamp.date() == day for stamp in self.completed_dates)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "type": self.type.value,
            "difficulty": self.difficulty.value,
            "xp_reward": self.xp_reward,
            "gold_reward": self.gold_reward,
            "mana_reward": self.mana_reward,
            "stamina_cost": self.stamina_cost,
            "status": self.status.value,
            "deadline": _iso(self.deadline),
            "completed_at": _iso(self.completed_at),
            "completed_dates": [stamp.isoformat() for stamp in self.completed_dates],
            "streak": self.streak,
            "is_positive": self.is_positive,
            "linked_progress_bars": list(self.linked_progress_bars),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, raw: dict) -> "Quest":
        return cls(
            id=raw["id"],
            title=raw["title"],
            description=raw.get("description", ""),
            category=raw.get("category", "general"),
            type=QuestType(raw["type"]),
            difficulty=Difficulty(raw["difficulty"]),
            xp_reward=int(raw.get("xp_reward", 0)),
            gold_reward=int(raw.get("gold_reward", 0)),
            mana_reward=int(raw.get("mana_reward", 0)),
            stamina_cost=int(raw.get("stamina_cost", 0)),
            status=QuestStatus(raw.get("status", QuestStatus.ACTIVE.value)),
            deadline=_dt(raw.get("deadline")),
            completed_at=_dt(raw.get("completed_at")),
            completed_dates=[_dt(stamp) for stamp in raw.get("completed_dates", [])],
            streak=int(raw.get("streak", 0)),
            is_positive=raw.get("is_positive"),
            linked_progress_bars=list(raw.get("linked_progress_bars") or []),
            created_at=_dt(raw.get("created_at")),
            updated_at=_dt(raw.get("updated_at")),
        )


@dataclass
class Rule:
    trigger_type: TriggerType
    value: float
    description: str = ""
    trigger_task_id: str | None = None
    id: str = field(default_factory=lambda: new_id("rule"))

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "trigger_type": self.trigger_type.value,
            "trigger_task_id": self.trigger_task_id,
            "value": self.value,
            "description": self.description,
        }

    @classmethod
    def from_record(cls, raw: dict) -> "Rule":
        return cls(
            id=raw.get("id") or new_id("rule"),
            trigger_type=TriggerType(raw["trigger_type"]),
            trigger_task_id=raw.get("trigger_task_id") or None,
            value=raw.get("value", 0),
            description=raw.get("description", ""),
        )


@dataclass
class Reward:
    type: RewardType
    amount: int
    item_id: str | None = None

    def to_record(self) -> dict:
        return {"type": self.type.value, "amount": self.amount, "item_id": self.item_id}

    @classmethod
    def from_record(cls, raw: dict | None) -> "Reward | None":
        if not raw:
            return None
        return cls(type=RewardType(raw["type"]), amount=int(raw.get("amount", 0)), item_id=raw.get("item_id"))


@dataclass
class Milestone:
    value: float
    title: str = ""
    description: str = ""
    reward: Reward | None = None
    achieved: bool = False
    achieved_at: datetime | None = None
    id: str = field(default_factory=lambda: new_id("milestone"))

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "value": self.value,
            "title": self.title,
            "description": self.description,
            "reward": self.reward.to_record() if self.reward else None,
            "achieved": self.achieved,
            "achieved_at": _iso(self.achieved_at),
        }

    @classmethod
    def from_record(cls, raw: dict) -> "Milestone":
        return cls(
            id=raw.get("id") or new_id("milestone"),
            value=raw["value"],
            title=raw.get("title", ""),
            description=raw.get("description", ""),
            reward=Reward.from_record(raw.get("reward")),
            achieved=bool(raw.get("achieved", False)),
            achieved_at=_dt(raw.get("achieved_at")),
        )


@dataclass(frozen=True)
class HistoryEntry:
    previous_value: float
    new_value: float
    change: float
    reason: str
    trigger_type: TriggerType
    date: datetime
    id: str = field(default_factory=lambda: new_id("history"))

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "change": self.change,
            "reason": self.reason,
            "trigger_type": self.trigger_type.value,
            "date": self.date.isoformat(),
        }

    @classmethod
    def from_record(cls, raw: dict) -> "HistoryEntry":
        return cls(
            id=raw["id"],
            previous_value=raw["previous_value"],
            new_value=raw["new_value"],
            change=raw["change"],
            reason=raw.get("reason", ""),
            trigger_type=TriggerType(raw["trigger_type"]),
            date=_dt(raw["date"]),
        )


@dataclass
class ProgressBar:
    id: str
    name: str
    target_value: float
    current_value: float = 0
    description: str = ""
    icon: str = ""
    color: str = "#3B82F6"
    category: str = "general"
    visualization_type: str = "bar"
    increment_rules: list[Rule] = field(default_factory=list)
    decrement_rules: list[Rule] = field(default_factory=list)
    milestones: list[Milestone] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def rules(self, kind: RuleKind) -> list[Rule]:
        return self.increment_rules if kind is RuleKind.INCREMENT else self.decrement_rules

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "category": self.category,
            "visualization_type": self.visualization_type,
            "current_value": self.current_value,
            "target_value": self.target_value,
            "rules": {
                "increment": [rule.to_record() for rule in self.increment_rules],
                "decrement": [rule.to_record() for rule in self.decrement_rules],
            },
            "milestones": [milestone.to_record() for milestone in self.milestones],
            "history": [entry.to_record() for entry in self.history],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, raw: dict) -> "ProgressBar":
        rules = raw.get("rules") or {}
        return cls(
            id=raw["id"],
            name=raw["name"],
            description=raw.get("description", ""),
            icon=raw.get("icon", ""),
            color=raw.get("color", "#3B82F6"),
            category=raw.get("category", "general"),
            visualization_type=raw.get("visualization_type", "bar"),
            current_value=raw.get("current_value", 0),
            target_value=raw["target_value"],
            increment_rules=[Rule.from_record(r) for r in rules.get("increment", [])],
            decrement_rules=[Rule.from_record(r) for r in rules.get("decrement", [])],
            milestones=[Milestone.from_record(m) for m in raw.get("milestones", [])],
            history=[HistoryEntry.from_record(h) for h in raw.get("history", [])],
            created_at=_dt(raw.get("created_at")),
            updated_at=_dt(raw.get("updated_at")),
        )
