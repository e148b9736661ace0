# providers/scrobble/anilist/sink.py
# Reconciles a resolved scrobble against the viewer's AniList Watching / Planning lists.
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Hashable, Iterator, Literal

from _logging import Logger, log as BASE_LOG
from providers.anilist.client import (
    ANILISTError,
    STATUS_COMPLETED,
    STATUS_CURRENT,
    STATUS_PLANNING,
    TrackedEntry,
    TrackedList,
    TrackerClient,
)
from providers.notify.mattermost import Notifier, NullNotifier
from providers.scrobble.scrobble import ScrobbleEvent

Outcome = Literal["updated", "completed", "skipped", "failed"]
ListKind = Literal["watching", "planning"]

WATCHING_NAMES = ("Watching",)
PLANNING_NAMES = ("Planning",)


@dataclass(frozen=True)
class ReconcileResult:
    outcome: Outcome
    reason: str | None = None
    entry_id: int | None = None
    list_kind: ListKind | None = None
    progress: int | None = None
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"outcome": self.outcome}
        for k in ("reason", "entry_id", "list_kind", "progress", "status"):
            v = getattr(self, k)
            if v is not None:
                d[k] = v
        if self.raw:
            d["raw"] = dict(self.raw)
        return d


@dataclass(frozen=True)
class PlannedUpdate:
    progress: int
    status: str | None = None


class KeyedLocks:
    """One lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list[Any]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        slot[0].acquire()
        try:
            yield
        finally:
            slot[0].release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def list_kind(lst: TrackedList) -> ListKind | None:
    if lst.is_custom:
        return None
    if lst.status == STATUS_CURRENT or (lst.status is None and lst.name in WATCHING_NAMES):
        return "watching"
    if lst.status == STATUS_PLANNING or (lst.status is None and lst.name in PLANNING_NAMES):
        return "planning"
    return None


def plan_update(kind: ListKind, entry: TrackedEntry, episode: int, total: int | None) -> PlannedUpdate | str:
    """Apply the guards for one entry; returns the update to send or the skip reason."""
    if kind == "watching":
        if entry.progress >= episode:
            return "progress_ahead"
        if total is not None and total < episode:
            return "exceeds_total"
        status = STATUS_COMPLETED if total is not None and episode == total else None
        return PlannedUpdate(episode, status)

    if episode != 1:
        return "not_first_episode"
    if entry.progress > episode:
        return "progress_ahead"
    if total is not None and total < episode:
        return "exceeds_total"
    status = STATUS_COMPLETED if total is not None and episode == total else STATUS_CURRENT
    return PlannedUpdate(episode, status)


_SKIP_TEXT = {
    "progress_ahead": "anilist progress >= current episode",
    "exceeds_total": "current episode is > max episodes",
    "not_first_episode": 'anime on "Planning" list but this is not the first episode',
}


class ProgressReconciler:
    def __init__(
        self,
        client: TrackerClient,
        notifier: Notifier | None = None,
        *,
        locks: KeyedLocks | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.client = client
        self.notifier = notifier or NullNotifier()
        self.locks = locks or KeyedLocks()
        self._log = logger or BASE_LOG.child("ANILIST")

    def reconcile(self, ev: ScrobbleEvent, anilist_id: int, *, reqid: str = "-") -> list[ReconcileResult]:
        episode = ev.episode
        if episode is None or episode < 1:
            self._log.warn(f"[{reqid}] skipping update, event carries no episode index.")
            return [ReconcileResult("skipped", "no_episode_index")]

        with self.locks.hold((ev.account, int(anilist_id))):
            try:
                user_id = self.client.get_authorized_user()
                lists = self.client.list_tracked_anime(user_id)
            except ANILISTError as e:
                return [self._failed(ev, reqid, "transport", f"Failed to fetch anilist lists: {e}")]

            matches: list[tuple[ListKind, TrackedEntry]] = []
            for lst in lists:
                kind = list_kind(lst)
                if kind is None:
                    continue
                matches.extend((kind, entry) for entry in lst.entries if entry.media_id == int(anilist_id))
            if not matches:
                self._log.warn(f"[{reqid}] skipping update, anilist id {anilist_id} is not on the Watching or Planning list.")
                return [ReconcileResult("skipped", "not_tracked")]

            return [self._apply(kind, entry, ev, episode, reqid) for kind, entry in matches]

    def _apply(self, kind: ListKind, entry: TrackedEntry, ev: ScrobbleEvent, episode: int, reqid: str) -> ReconcileResult:
        total = entry.episodes if entry.episodes is not None else ev.episode_count
        plan = plan_update(kind, entry, episode, total)
        if isinstance(plan, str):
            self._log.warn(f"[{reqid}] skipping update, {_SKIP_TEXT.get(plan, plan)}.")
            return ReconcileResult("skipped", plan, entry_id=entry.id, list_kind=kind, progress=entry.progress)

        try:
            res = self.client.update_entry(entry.id, plan.progress, plan.status)
        except ANILISTError as e:
            return self._failed(ev, reqid, "transport", f"Failed to update progress: {e}", entry=entry, kind=kind)

        if res.status == STATUS_COMPLETED:
            self._log.info(f"[{reqid}] marked as {res.status}.")
            self._notify(self.notifier.notify_completion, ev.show_title or entry.title, entry.site_url)
            return ReconcileResult("completed", entry_id=entry.id, list_kind=kind, progress=res.progress, status=res.status, raw=res.raw)

        if res.status == STATUS_CURRENT and res.progress == episode:
            if kind == "planning":
                self._log.info(f"[{reqid}] updated progress to {res.progress} and status to {res.status}.")
            else:
                self._log.info(f"[{reqid}] updated progress to {res.progress}.")
            return ReconcileResult("updated", entry_id=entry.id, list_kind=kind, progress=res.progress, status=res.status, raw=res.raw)

        raw = json.dumps(res.raw, sort_keys=True)
        return self._failed(
            ev,
            reqid,
            "unexpected_response",
            f"Failed to update progress, API returned unexpected result: {raw}",
            entry=entry,
            kind=kind,
            raw=res.raw,
        )

    def _failed(
        self,
        ev: ScrobbleEvent,
        reqid: str,
        reason: str,
        text: str,
        *,
        entry: TrackedEntry | None = None,
        kind: ListKind | None = None,
        raw: dict[str, Any] | None = None,
    ) -> ReconcileResult:
        self._log.error(f"[{reqid}] {text}")
        self._notify(self.notifier.notify_failure, ev.show_title, ev.season, ev.episode, text)
        return ReconcileResult(
            "failed",
            reason,
            entry_id=entry.id if entry else None,
            list_kind=kind,
            raw=dict(raw or {}),
        )

    def _notify(self, fn: Any, *args: Any) -> None:
        try:
            fn(*args)
        except Exception as e:
            self._log.error(f"notification failed: {e}")
