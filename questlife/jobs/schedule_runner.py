from __future__ import annotations

import argparse
import logging
import time
from datetime import date, timedelta

from questlife.game import Game
from questlife.jobs.reminders import open_game, send_evening, send_morning

logger = logging.getLogger(__name__)

EVENING_HOUR = 19
WINDOW_MINUTES = 15
MINUTES_PER_DAY = 24 * 60


def get_schedule_context(game: Game) -> dict:
    now = game.clock()
    settings = game.settings()
    reminder_hour, reminder_minute = (int(part) for part in settings["reminder_time"].split(":"))
    return {
        "local_date": now.date(),
        "local_hour": now.hour,
        "local_minute": now.minute,
        "reminder_hour": reminder_hour,
        "reminder_minute": reminder_minute,
    }


def _window_day(ctx: dict, start_hour: int, start_minute: int) -> date | None:
    """Day whose window starting at start_hour:start_minute is open now, if any."""
    now = ctx["local_hour"] * 60 + ctx["local_minute"]
    start = start_hour * 60 + start_minute
    if (now - start) % MINUTES_PER_DAY >= WINDOW_MINUTES:
        return None
    # a window opened before midnight still belongs to the day it opened on
    return ctx["local_date"] - timedelta(days=1) if now < start else ctx["local_date"]


def main(game: Game | None = None) -> None:
    game = game or open_game()
    ctx = get_schedule_context(game)

    # Run this command every 5-10 minutes via cron/systemd timer, or pass --every.
    morning_day = _window_day(ctx, ctx["reminder_hour"], ctx["reminder_minute"])
    if morning_day is not None:
        send_morning(game, morning_day)

    evening_day = _window_day(ctx, EVENING_HOUR, 0)
    if evening_day is not None:
        send_evening(game, evening_day)

    if game.persister.pending and not game.flush():
        logger.warning("%d record(s) still waiting to be written", len(game.persister.pending))


def cli() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--every", type=int, default=0, help="Repeat every N minutes instead of running once")
    args = parser.parse_args()

    while True:
        # reopen each tick so records written by the server are picked up
        main(open_game())
        if args.every <= 0:
            return
        time.sleep(args.every * 60)


if __name__ == "__main__":
    cli()
