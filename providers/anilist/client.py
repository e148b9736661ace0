# /providers/anilist/client.py
# AniList GraphQL client used by the scrobbler
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import requests

from _logging import Logger, log as BASE_LOG
from ._common import build_session, parse_rate_limit, request_with_retries

__all__ = [
    "ANILISTClient",
    "ANILISTError",
    "ANILISTAuthError",
    "ANILISTTransportError",
    "TrackerClient",
    "TrackedEntry",
    "TrackedList",
    "UpdateResult",
    "STATUS_CURRENT",
    "STATUS_PLANNING",
    "STATUS_COMPLETED",
]

GQL_URL = "https://graphql.anilist.co"
UA = "AniListScrobbler/1.0"

STATUS_CURRENT = "CURRENT"
STATUS_PLANNING = "PLANNING"
STATUS_COMPLETED = "COMPLETED"

GQL_VIEWER = "query { Viewer { id name } }"

GQL_LISTS = """
query ($userId: Int!) {
  MediaListCollection(userId: $userId, type: ANIME, status_in: [CURRENT, PLANNING]) {
    lists {
      name
      status
      isCustomList
      entries {
        id
        status
        progress
        media {
          id
          episodes
          siteUrl
          title { romaji english native }
        }
      }
    }
  }
}
""".strip()

GQL_SAVE_PROGRESS = """
mutation ($id: Int!, $progress: Int!) {
  SaveMediaListEntry(id: $id, progress: $progress) { id status progress }
}
""".strip()

GQL_SAVE_PROGRESS_STATUS = """
mutation ($id: Int!, $progress: Int!, $status: MediaListStatus!) {
  SaveMediaListEntry(id: $id, progress: $progress, status: $status) { id status progress }
}
""".strip()


class ANILISTError(RuntimeError):
    pass


class ANILISTAuthError(ANILISTError):
    pass


class ANILISTTransportError(ANILISTError):
    pass


@dataclass(frozen=True)
class TrackedEntry:
    id: int
    media_id: int
    progress: int
    episodes: int | None
    site_url: str
    status: str = ""
    title: str = ""


@dataclass(frozen=True)
class TrackedList:
    name: str
    status: str | None
    entries: tuple[TrackedEntry, ...] = ()
    is_custom: bool = False


@dataclass(frozen=True)
class UpdateResult:
    status: str | None
    progress: int | None
    raw: dict[str, Any] = field(default_factory=dict)


class TrackerClient(Protocol):
    def get_authorized_user(self) -> int: ...
    def list_tracked_anime(self, user_id: int) -> list[TrackedList]: ...
    def update_entry(self, entry_id: int, progress: int, status: str | None = None) -> UpdateResult: ...


def label_anilist(method: str, url: str, kw: Mapping[str, Any]) -> str:
    payload = kw.get("json")
    if isinstance(payload, Mapping):
        q = str(payload.get("query") or "")
        if "Viewer" in q:
            return "viewer"
        if "MediaListCollection" in q:
            return "lists:index"
        if "SaveMediaListEntry" in q:
            return "lists:update"
    return "graphql"


def _to_int(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _pick_title(t: Any) -> str:
    if not isinstance(t, Mapping):
        return ""
    return str(t.get("english") or t.get("romaji") or t.get("native") or "").strip()


def _parse_entry(e: Mapping[str, Any]) -> TrackedEntry | None:
    media = e.get("media") or {}
    eid = _to_int(e.get("id"))
    mid = _to_int(media.get("id"))
    if eid is None or mid is None:
        return None
    return TrackedEntry(
        id=eid,
        media_id=mid,
        progress=_to_int(e.get("progress")) or 0,
        episodes=_to_int(media.get("episodes")),
        site_url=str(media.get("siteUrl") or ""),
        status=str(e.get("status") or ""),
        title=_pick_title(media.get("title")),
    )


class ANILISTClient:
    def __init__(
        self,
        access_token: str,
        *,
        timeout: float = 15.0,
        max_retries: int = 3,
        session: requests.Session | None = None,
        logger: Logger | None = None,
    ):
        if not access_token:
            raise ANILISTAuthError("ANILIST requires access_token")
        self.timeout = float(timeout)
        self.max_retries = int(max_retries)
        self._log = logger or BASE_LOG.child("ANILIST")
        self.session = session or build_session("ANILIST", self._log, feature_label=label_anilist)
        self.session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": UA,
            }
        )
        self._viewer_cache: dict[str, Any] | None = None

    def gql(self, query: str, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = dict(variables)

        try:
            r = request_with_retries(
                self.session,
                "POST",
                GQL_URL,
                json=payload,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        except requests.RequestException as e:
            raise ANILISTTransportError(f"AniList unreachable: {e}") from e

        try:
            j = r.json() or {}
        except ValueError:
            j = {}

        if r.status_code in (401, 403):
            raise ANILISTAuthError("AniList unauthorized")
        if r.status_code == 429:
            rate = parse_rate_limit(r.headers)
            raise ANILISTTransportError(f"AniList rate limited (remaining={rate['remaining']} reset={rate['reset']})")
        if r.status_code >= 500:
            raise ANILISTTransportError(f"AniList http:{r.status_code}")
        if r.status_code >= 400:
            raise ANILISTError(f"AniList http:{r.status_code}")

        errs = j.get("errors")
        if errs:
            msg = None
            if isinstance(errs, list) and isinstance(errs[0], Mapping):
                msg = errs[0].get("message")
            raise ANILISTError(str(msg or "AniList GraphQL error"))

        data = j.get("data")
        return data if isinstance(data, dict) else {}

    def viewer(self) -> dict[str, Any]:
        if isinstance(self._viewer_cache, dict) and self._viewer_cache.get("id"):
            return self._viewer_cache
        data = self.gql(GQL_VIEWER)
        v = data.get("Viewer")
        self._viewer_cache = dict(v) if isinstance(v, Mapping) else {}
        return self._viewer_cache

    def get_authorized_user(self) -> int:
        uid = _to_int(self.viewer().get("id"))
        if not uid:
            raise ANILISTAuthError("AniList viewer has no id")
        return uid

    def list_tracked_anime(self, user_id: int) -> list[TrackedList]:
        data = self.gql(GQL_LISTS, {"userId": int(user_id)})
        coll = data.get("MediaListCollection") or {}
        out: list[TrackedList] = []
        for lst in coll.get("lists") or []:
            if not isinstance(lst, Mapping):
                continue
            entries = tuple(
                te for te in (_parse_entry(e) for e in (lst.get("entries") or []) if isinstance(e, Mapping)) if te
            )
            out.append(
                TrackedList(
                    name=str(lst.get("name") or ""),
                    status=(str(lst["status"]) if lst.get("status") else None),
                    entries=entries,
                    is_custom=bool(lst.get("isCustomList")),
                )
            )
        return out

    def update_entry(self, entry_id: int, progress: int, status: str | None = None) -> UpdateResult:
        if status:
            data = self.gql(GQL_SAVE_PROGRESS_STATUS, {"id": int(entry_id), "progress": int(progress), "status": status})
        else:
            data = self.gql(GQL_SAVE_PROGRESS, {"id": int(entry_id), "progress": int(progress)})
        saved = data.get("SaveMediaListEntry")
        raw = dict(saved) if isinstance(saved, Mapping) else {}
        return UpdateResult(
            status=(str(raw["status"]) if raw.get("status") else None),
            progress=_to_int(raw.get("progress")),
            raw=raw,
        )
