from __future__ import annotations

import argparse
import logging
from datetime import date

from questlife.config import configure_logging, load_config
from questlife.game import Game
from questlife.models import QuestType
from questlife.notifier import build_notifier

logger = logging.getLogger(__name__)


def open_game() -> Game:
    config = load_config()
    configure_logging(config.log_level)
    return Game.open(config.db_path, persist_attempts=config.persist_attempts, starter_pack=config.starter_pack)


def _due_dailies(game: Game) -> list:
    return [q for q in game.quests.today_quests() if q.type is QuestType.DAILY]


def morning_summary(game: Game) -> str:
    dailies = _due_dailies(game)
    deadlines = game.quests.upcoming_deadlines(limit=3)
    user = game.ledger.user
    lines = [f"Level {user.level} | HP {user.hp}/{user.max_hp} | Stamina {user.stamina}/{user.max_stamina}"]
    if dailies:
        lines.append("Dailies: " + ", ".join(q.title for q in dailies))
    else:
        lines.append("No dailies due today.")
    for quest in deadlines:
        lines.append(f"Due {quest.deadline:%Y-%m-%d}: {quest.title}")
    if user.current_streak:
        lines.append(f"Streak: {user.current_streak} day(s)")
    return "\n".join(lines)


def send_morning(game: Game, for_date: date | None = None) -> bool:
    for_date = for_date or game.clock().date()
    if game.was_reminder_sent("morning", for_date):
        return False
    sent = build_notifier(game.settings()).send("Quest Log", morning_summary(game))
    if sent:
        game.mark_reminder_sent("morning", for_date)
    return sent


def send_evening(game: Game, for_date: date | None = None) -> bool:
    for_date = for_date or game.clock().date()
    if game.was_reminder_sent("evening", for_date):
        return False
    dailies = _due_dailies(game)
    if not dailies:
        return False
    body = f"{len(dailies)} daily quest(s) still open: " + ", ".join(q.title for q in dailies)
    if game.ledger.user.current_streak:
        body += f". Keep your {game.ledger.user.current_streak}-day streak alive."
    sent = build_notifier(game.settings()).send("Evening Nudge", body, priority="high")
    if sent:
        game.mark_reminder_sent("evening", for_date)
    return sent


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("mode", choices=["morning", "evening"])
    args = parser.parse_args()

    game = open_game()
    if args.mode == "morning":
        sent = send_morning(game)
    else:
        sent = send_evening(game)
    logger.info("%s reminder sent: %s", args.mode, sent)


if __name__ == "__main__":
    main()
