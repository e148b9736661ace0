# /providers/notify/mattermost.py
# Mattermost notifications for completed shows and failed updates
from __future__ import annotations

from typing import Any, Protocol

import requests

from _logging import Logger, log as BASE_LOG
from sc_platform.config_base import MattermostSettings

AUTHOR = "Scrobbler"
COLOR_RATE = "#00cc00"
COLOR_FAIL = "#dc143c"


class Notifier(Protocol):
    def notify_completion(self, title: str, url: str) -> None: ...
    def notify_failure(self, title: str, season: Any, episode: Any, reason: str) -> None: ...


class NullNotifier:
    def notify_completion(self, title: str, url: str) -> None:
        return None

    def notify_failure(self, title: str, season: Any, episode: Any, reason: str) -> None:
        return None


class MattermostNotifier:
    def __init__(
        self,
        settings: MattermostSettings,
        *,
        session: requests.Session | None = None,
        logger: Logger | None = None,
    ):
        self.settings = settings
        self.session = session or requests.Session()
        self._log = logger or BASE_LOG.child("NOTIFY")

    def _post(self, body: dict[str, Any]) -> bool:
        if not self.settings.enabled:
            return False
        try:
            r = self.session.post(self.settings.webhook, json=body, timeout=self.settings.timeout)
        except requests.RequestException as e:
            self._log.error(f"mattermost post failed: {e}")
            return False
        if r.status_code >= 400:
            self._log.warn(f"mattermost returned {r.status_code}: {(r.text or '')[:200]}")
            return False
        return True

    def notify_completion(self, title: str, url: str) -> None:
        self._post({
            "channel": self.settings.channel,
            "attachments": [
                {
                    "color": COLOR_RATE,
                    "author_name": AUTHOR,
                    "author_icon": self.settings.icon_rate,
                    "title": title,
                    "text": f"This show is now marked as completed, don't forget to [rate]({url}) it!",
                }
            ],
            "fallback": f"**{title}** completed, don't forget to [rate]({url}) it!",
        })

    def notify_failure(self, title: str, season: Any, episode: Any, reason: str) -> None:
        head = f"{title} - S{season}E{episode}"
        self._post({
            "channel": self.settings.channel,
            "attachments": [
                {
                    "color": COLOR_FAIL,
                    "author_name": AUTHOR,
                    "author_icon": self.settings.icon_fail,
                    "title": head,
                    "text": reason,
                }
            ],
            "fallback": f"**{head}**: {reason}",
        })


def build_notifier(settings: MattermostSettings, logger: Logger | None = None) -> Notifier:
    if settings.enabled:
        return MattermostNotifier(settings, logger=logger)
    return NullNotifier()
