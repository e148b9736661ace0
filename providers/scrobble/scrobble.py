# providers/scrobble/scrobble.py
from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from _logging import Logger, log as BASE_LOG

EVENT_SCROBBLE = "media.scrobble"
DEFAULT_AGENT = "com.plexapp.agents.hama"

RejectReason = Literal["not_scrobble", "wrong_account", "wrong_library", "not_episode", "no_identifier"]


# --- inbound payload -----------------------------------------------------------
class PlexAccount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None


class PlexMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    library_section_title: str | None = Field(default=None, alias="librarySectionTitle")
    library_section_type: str | None = Field(default=None, alias="librarySectionType")
    type: str | None = None
    guid: str | None = None
    title: str | None = None
    grandparent_title: str | None = Field(default=None, alias="grandparentTitle")
    parent_index: int | None = Field(default=None, alias="parentIndex")
    index: int | None = None


class PlexWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    event: str | None = None
    account: PlexAccount | None = Field(default=None, alias="Account")
    metadata: PlexMetadata | None = Field(default=None, alias="Metadata")


# --- types ---------------------------------------------------------------------
@dataclass(frozen=True)
class ScrobbleEvent:
    event: str
    account: str
    library: str
    library_type: str
    media_type: str
    guid: str
    show_title: str
    episode_title: str
    season: int | None
    episode: int | None
    episode_count: int | None = None

    @property
    def label(self) -> str:
        return f"{self.show_title} - S{self.season}E{self.episode} - {self.episode_title}"


@dataclass(frozen=True)
class Admission:
    admitted: bool
    reason: RejectReason | None = None
    source_id: str | None = None

    @classmethod
    def reject(cls, reason: RejectReason) -> "Admission":
        return cls(False, reason)


def from_plex_webhook(payload: Any) -> ScrobbleEvent | None:
    """Build a ScrobbleEvent from a Plex webhook body (dict, JSON text or a form dict with a 'payload' field)."""
    try:
        if isinstance(payload, dict) and isinstance(payload.get("payload"), (str, bytes)):
            obj = json.loads(payload["payload"])
        elif isinstance(payload, (str, bytes, bytearray)):
            obj = json.loads(payload if isinstance(payload, str) else payload.decode("utf-8"))
        else:
            obj = payload
        hook = PlexWebhook.model_validate(obj)
    except (ValueError, ValidationError):
        return None

    md = hook.metadata or PlexMetadata()
    return ScrobbleEvent(
        event=(hook.event or "").strip(),
        account=((hook.account.title if hook.account else None) or "").strip(),
        library=(md.library_section_title or "").strip(),
        library_type=(md.library_section_type or "").strip(),
        media_type=(md.type or "").strip(),
        guid=(md.guid or "").strip(),
        show_title=(md.grandparent_title or "").strip(),
        episode_title=(md.title or "").strip(),
        season=md.parent_index,
        episode=md.index,
    )


def correlation_key(ev: ScrobbleEvent) -> str:
    """Stable short id for log correlation; identical redeliveries share the same key."""
    basis = "|".join((ev.event, ev.account, ev.guid, str(ev.season), str(ev.episode)))
    return hashlib.sha1(basis.encode("utf-8")).hexdigest()[:8]


def anidb_pattern(agent: str = DEFAULT_AGENT) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(agent)}://anidb-(\d+)(?:/\d+/\d+)?\?lang=(\w+)$", re.I)


# --- filter --------------------------------------------------------------------
class EventFilter:
    """Admits completed-episode scrobbles of the configured account and libraries."""

    def __init__(
        self,
        account: str,
        libraries: Iterable[str],
        *,
        agent: str = DEFAULT_AGENT,
        logger: Logger | None = None,
    ) -> None:
        self.account = account
        self.libraries = frozenset(libraries)
        self.agent = agent
        self._pat = anidb_pattern(agent)
        self._log = logger or BASE_LOG.child("SCROBBLE")

    def check(self, ev: ScrobbleEvent, reqid: str = "-") -> Admission:
        recv = self._log.info if ev.event == EVENT_SCROBBLE else self._log.debug
        recv(f"[{reqid}] Received {ev.event or '?'} for account {ev.account or '?'} ...")

        if ev.event != EVENT_SCROBBLE:
            self._log.debug(f"[{reqid}] Ignoring event, type {ev.event} is not {EVENT_SCROBBLE}.")
            return Admission.reject("not_scrobble")
        if ev.account != self.account:
            self._log.debug(f"[{reqid}] Ignoring event, account {ev.account} is not {self.account}.")
            return Admission.reject("wrong_account")
        if ev.library not in self.libraries:
            self._log.debug(f"[{reqid}] Ignoring event, library {ev.library} is not in {sorted(self.libraries)}.")
            return Admission.reject("wrong_library")
        if not (ev.library_type == "show" and ev.media_type == "episode"):
            self._log.debug(f"[{reqid}] Ignoring event, metadata type is not an episode.")
            return Admission.reject("not_episode")
        if not ev.guid.lower().startswith(self.agent.lower()):
            self._log.warn(f"[{reqid}] Metadata does not contain a {self.agent} GUID, cannot extract anidb id to scrobble!")
            return Admission.reject("no_identifier")

        m = self._pat.match(ev.guid)
        if not m:
            self._log.error(f"[{reqid}] Unable to extract anidb id from GUID {ev.guid}!")
            return Admission.reject("no_identifier")
        return Admission(True, source_id=m.group(1))


__all__ = (
    "ScrobbleEvent",
    "Admission",
    "EventFilter",
    "PlexWebhook",
    "from_plex_webhook",
    "correlation_key",
    "anidb_pattern",
)
