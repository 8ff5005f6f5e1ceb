from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

logger = logging.getLogger(__name__)

NTFY_PRIORITIES = {"low": "2", "normal": "3", "high": "4"}


class Notifier:
    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        raise NotImplementedError


class NoopNotifier(Notifier):
    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        logger.debug("Notifications disabled, dropping %r", title)
        return False


class _WebhookNotifier(Notifier):
    max_attempts = 3
    timeout_s = 5
    backoff_s = 0.25

    def _post(self, req: urllib.request.Request) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_s) as response:
                    response.read()
                return True
            except (urllib.error.URLError, TimeoutError, OSError) as exc:
                if attempt >= self.max_attempts:
                    logger.warning("Reminder delivery to %s failed after %d attempts: %s", req.full_url, attempt, exc)
                    return False
                time.sleep(self.backoff_s * attempt)
        return False


class DiscordNotifier(_WebhookNotifier):
    def __init__(self, webhook_url: str) -> None:
        self.webhook_url = webhook_url

    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        prefix = "⚠️ " if priority == "high" else ""
        payload = {"content": f"{prefix}**{title}**\n{body}"}
        req = urllib.request.Request(
            self.webhook_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        return self._post(req)


class NtfyNotifier(_WebhookNotifier):
    def __init__(self, topic_url: str) -> None:
        self.topic_url = topic_url

    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        req = urllib.request.Request(
            self.topic_url,
            data=body.encode("utf-8"),
            headers={"Title": title, "Priority": NTFY_PRIORITIES.get(priority, "3"), "Tags": "crossed_swords"},
            method="POST",
        )
        return self._post(req)


def build_notifier(settings: dict) -> Notifier:
    if not settings.get("notifications_enabled", True):
        return NoopNotifier()
    if settings.get("discord_webhook_url"):
        return DiscordNotifier(settings["discord_webhook_url"])
    if settings.get("ntfy_topic_url"):
        return NtfyNotifier(settings["ntfy_topic_url"])
    return NoopNotifier()
