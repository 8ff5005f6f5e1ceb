from __future__ import annotations

import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch

from questlife.game import Game
from questlife.jobs import reminders
from questlife.notifier import DiscordNotifier, NoopNotifier, NtfyNotifier, build_notifier


class ReminderTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.now = datetime(2026, 3, 10, 19, 5)
        self.game = Game.open(Path(self.tmp.name) / "test.sqlite3", clock=lambda: self.now, starter_pack=None)
        self.today = date(2026, 3, 10)

    def tearDown(self) -> None:
        self.tmp.cleanup()


class ReminderIdempotencyTests(ReminderTestCase):
    @patch("questlife.jobs.reminders.build_notifier")
    def test_morning_sends_once_per_day(self, build) -> None:
        build.return_value.send.return_value = True
        self.game.quests.add_quest("Meditate", "daily", "trivial")

        self.assertTrue(reminders.send_morning(self.game, self.today))
        self.assertFalse(reminders.send_morning(self.game, self.today))

        build.return_value.send.assert_called_once()
        title, body = build.return_value.send.call_args.args
        self.assertEqual(title, "Quest Log")
        self.assertIn("Meditate", body)

    @patch("questlife.jobs.reminders.build_notifier")
    def test_evening_skipped_when_dailies_done(self, build) -> None:
        quest = self.game.quests.add_quest("Meditate", "daily", "trivial")
        self.game.quests.complete_quest(quest.id)

        self.assertFalse(reminders.send_evening(self.game, self.today))
        build.return_value.send.assert_not_called()

    @patch("questlife.jobs.reminders.build_notifier")
    def test_evening_nudges_open_dailies(self, build) -> None:
        build.return_value.send.return_value = True
        self.game.quests.add_quest("Stretch", "daily", "easy")

        self.assertTrue(reminders.send_evening(self.game, self.today))
        self.assertFalse(reminders.send_evening(self.game, self.today))
        kwargs = build.return_value.send.call_args.kwargs
        self.assertEqual(kwargs["priority"], "high")

    @patch("questlife.jobs.reminders.build_notifier")
    def test_failed_delivery_is_retried_next_tick(self, build) -> None:
        build.return_value.send.return_value = False
        self.game.quests.add_quest("Meditate", "daily", "trivial")

        self.assertFalse(reminders.send_morning(self.game, self.today))
        self.assertFalse(self.game.was_reminder_sent("morning", self.today))

        build.return_value.send.return_value = True
        self.assertTrue(reminders.send_morning(self.game, self.today))
        self.assertTrue(self.game.was_reminder_sent("morning", self.today))
        self.assertEqual(build.return_value.send.call_count, 2)

    def test_summary_lists_deadlines(self) -> None:
        self.game.quests.add_quest("File taxes", "todo", "hard", deadline=datetime(2026, 4, 15))
        summary = reminders.morning_summary(self.game)
        self.assertIn("No dailies due today.", summary)
        self.assertIn("Due 2026-04-15: File taxes", summary)


class BuildNotifierTests(unittest.TestCase):
    def test_picks_configured_channel(self) -> None:
        self.assertIsInstance(build_notifier({"notifications_enabled": False, "discord_webhook_url": "x"}), NoopNotifier)
        self.assertIsInstance(build_notifier({"discord_webhook_url": "https://discord.test/hook"}), DiscordNotifier)
        self.assertIsInstance(build_notifier({"ntfy_topic_url": "https://ntfy.sh/q"}), NtfyNotifier)
        self.assertIsInstance(build_notifier({}), NoopNotifier)

    @patch("questlife.notifier.urllib.request.urlopen", side_effect=OSError("offline"))
    @patch("questlife.notifier.time.sleep")
    def test_delivery_failure_is_retried_then_reported(self, sleep, urlopen) -> None:
        notifier = NtfyNotifier("https://ntfy.sh/q")
        self.assertFalse(notifier.send("Quest Log", "hello", priority="high"))
        self.assertEqual(urlopen.call_count, 3)
        request = urlopen.call_args.args[0]
        self.assertEqual(request.get_header("Priority"), "4")


if __name__ == "__main__":
    unittest.main()
