"""
Operator notifications: a generic JSON webhook and Gotify.

- NOTIFY_WEBHOOK_URL / NOTIFY_MIN_LEVEL: POST {level, title, message, extra}.
- GOTIFY_URL / GOTIFY_TOKEN / GOTIFY_PRIORITY / GOTIFY_MIN_LEVEL: POST /message with app token.
- Best-effort: an unconfigured notifier does nothing, a failed send is logged at DEBUG.
"""

from __future__ import annotations
import logging
import os
from typing import Mapping

import requests

log = logging.getLogger("notifier")

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}
APP_TAG = "MPD→Last.fm"


def _level(name: str) -> int:
    return _LEVELS.get(name.upper(), 30)


class WebhookNotifier:
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING", app_tag: str = APP_TAG):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = _level(min_level)
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.webhook_url or _level(level) < self.min_level:
            return
        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            # Slack/Discord-compatible webhooks accept this as well
            requests.post(self.webhook_url, json=payload, timeout=5)
        except requests.RequestException as e:
            log.debug("Notification send failed: %s", e)


class GotifyNotifier:
    def __init__(self, url: str | None, token: str | None, min_level: str = "WARNING",
                 default_priority: int = 5, app_tag: str = APP_TAG):
        self.url = url.rstrip("/") if url else None
        self.token = token.strip() if token else None
        self.min_level = _level(min_level)
        self.default_priority = default_priority
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.url or not self.token or _level(level) < self.min_level:
            return
        body = {
            "title": f"{self.app_tag}: {title}",
            "message": message if not extra else f"{message}\n\n{extra}",
            "priority": self.default_priority,
        }
        try:
            requests.post(f"{self.url}/message", json=body,
                          headers={"X-Gotify-Key": self.token}, timeout=5)
        except requests.RequestException as e:
            log.debug("Gotify send failed: %s", e)


class Alerter:
    """Fans one alert out to every notifier; each ignores it if not configured or below min_level."""

    def __init__(self, *notifiers):
        self.notifiers = notifiers

    def __call__(self, level: str, title: str, message: str, extra: dict | None = None):
        for notifier in self.notifiers:
            notifier.send(level, title, message, extra)


def from_env(env: Mapping[str, str] = os.environ) -> Alerter:
    app_tag = env.get("APP_TAG", APP_TAG)
    try:
        priority = int(env.get("GOTIFY_PRIORITY", "5"))
    except ValueError:
        log.warning("GOTIFY_PRIORITY is not an integer; using 5")
        priority = 5
    return Alerter(
        WebhookNotifier(
            env.get("NOTIFY_WEBHOOK_URL"),
            min_level=env.get("NOTIFY_MIN_LEVEL", "WARNING"),
            app_tag=app_tag,
        ),
        GotifyNotifier(
            env.get("GOTIFY_URL"),
            env.get("GOTIFY_TOKEN"),
            min_level=env.get("GOTIFY_MIN_LEVEL", "WARNING"),
            default_priority=priority,
            app_tag=app_tag,
        ),
    )
