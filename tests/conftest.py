# Scrobbler test scripts
from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from _logging import log as LOG  # noqa: E402
from providers.anilist.client import TrackedEntry, TrackedList, UpdateResult  # noqa: E402
from providers.scrobble.scrobble import ScrobbleEvent  # noqa: E402
from sc_platform.config_base import MappingSettings  # noqa: E402


class FakeTracker:
    """In-memory AniList: applies updates to its own entries like the real service."""

    def __init__(self, lists: list[TrackedList], *, reply: Any = None, user_id: int = 42) -> None:
        self.lists = lists
        self.reply = reply
        self.user_id = user_id
        self.updates: list[tuple[int, int, str | None]] = []
        self.list_calls = 0

    def get_authorized_user(self) -> int:
        return self.user_id

    def list_tracked_anime(self, user_id: int) -> list[TrackedList]:
        assert user_id == self.user_id
        self.list_calls += 1
        return list(self.lists)

    def update_entry(self, entry_id: int, progress: int, status: str | None = None) -> UpdateResult:
        self.updates.append((entry_id, progress, status))
        if self.reply is not None:
            return self.reply(entry_id, progress, status)
        new_lists = []
        out_status = status
        for lst in self.lists:
            entries = []
            for e in lst.entries:
                if e.id == entry_id:
                    out_status = status or e.status or "CURRENT"
                    e = replace(e, progress=progress, status=out_status)
                entries.append(e)
            new_lists.append(replace(lst, entries=tuple(entries)))
        self.lists = new_lists
        return UpdateResult(out_status, progress, {"id": entry_id, "status": out_status, "progress": progress})


class RecordingNotifier:
    def __init__(self) -> None:
        self.completed: list[tuple[str, str]] = []
        self.failed: list[tuple[str, Any, Any, str]] = []

    def notify_completion(self, title: str, url: str) -> None:
        self.completed.append((title, url))

    def notify_failure(self, title: str, season: Any, episode: Any, reason: str) -> None:
        self.failed.append((title, season, episode, reason))


def make_entry(
    media_id: int = 101,
    *,
    entry_id: int = 9001,
    progress: int = 0,
    episodes: int | None = 12,
    status: str = "CURRENT",
) -> TrackedEntry:
    return TrackedEntry(
        id=entry_id,
        media_id=media_id,
        progress=progress,
        episodes=episodes,
        site_url=f"https://anilist.co/anime/{media_id}",
        status=status,
        title="Show",
    )


def watching(*entries: TrackedEntry) -> TrackedList:
    return TrackedList(name="Watching", status="CURRENT", entries=tuple(entries))


def planning(*entries: TrackedEntry) -> TrackedList:
    return TrackedList(name="Planning", status="PLANNING", entries=tuple(entries))


def make_event(**kw: Any) -> ScrobbleEvent:
    base: dict[str, Any] = {
        "event": "media.scrobble",
        "account": "alice",
        "library": "Anime",
        "library_type": "show",
        "media_type": "episode",
        "guid": "com.plexapp.agents.hama://anidb-1234/1/4?lang=en",
        "show_title": "Show",
        "episode_title": "Episode",
        "season": 1,
        "episode": 4,
    }
    base.update(kw)
    return ScrobbleEvent(**base)


def plex_payload(**md: Any) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "librarySectionTitle": "Anime",
        "librarySectionType": "show",
        "type": "episode",
        "guid": "com.plexapp.agents.hama://anidb-1234/1/4?lang=en",
        "grandparentTitle": "Show",
        "title": "Episode",
        "parentIndex": 1,
        "index": 4,
    }
    meta.update(md)
    return {"event": "media.scrobble", "Account": {"title": "alice"}, "Metadata": meta}


@pytest.fixture(autouse=True)
def _quiet_logs() -> None:
    LOG.set_level("silent")


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    return tmp_path


@pytest.fixture()
def mapping_settings(tmp_path: Path) -> MappingSettings:
    return MappingSettings(
        url="https://example.test/anime_ids.json",
        cache_path=tmp_path / "cache" / "anidb.map",
        overrides_path=tmp_path / "mapping.yaml",
        max_age_hours=24,
        timeout=5,
    )
