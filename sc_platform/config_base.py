# sc_platform/config_base.py
# configuration management base.
from __future__ import annotations

import copy
import json
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

ANIDB_MAPPING_URL = "https://raw.githubusercontent.com/meisnate12/Plex-Meta-Manager-Anime-IDs/master/pmm_anime_ids.json"
ANIDB_MAPPING_PATH = "/var/tmp/anidb.map"


def CONFIG_BASE() -> Path:
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        # In container image mount /config as a volume
        return Path("/config")
    return Path.cwd()


# Default config
DEFAULT_CFG: dict[str, Any] = {
    "server": {
        "host": "localhost",                            # Bind address for the webhook listener
        "port": 9001,                                   # Plex → Settings → Webhooks points here
    },

    "runtime": {
        "log_level": "info",                            # silent | error | warn | info | debug
        "log_json": "",                                 # Optional path for JSON-lines log output
    },

    "plex": {
        "account": "",                                  # Plex account title whose scrobbles are relayed (required)
        "libraries": ["Anime"],                         # Library section titles to accept
        "guid_agent": "com.plexapp.agents.hama",        # Metadata agent carrying anidb ids in the GUID
    },

    "anilist": {
        "access_token": "",                             # AniList OAuth access token (required)
        "timeout": 15.0,                                # HTTP timeout (seconds)
        "max_retries": 3,                               # Retry budget for 429/5xx/network errors
    },

    "mapping": {
        "url": ANIDB_MAPPING_URL,                       # anidb → anilist catalog download
        "cache_path": ANIDB_MAPPING_PATH,               # Local copy of the catalog
        "overrides_path": "mapping.yaml",               # Hand-maintained anidb → anilist overrides (relative to CONFIG_BASE)
        "max_age_hours": 24,                            # Catalog freshness window
        "timeout": 30.0,                                # Download timeout (seconds)
    },

    "mattermost": {
        "webhook": "",                                  # Incoming webhook URL; empty = notifications off
        "channel": "",                                  # Target channel; empty = notifications off
        "icon_rate": "",                                # Author icon for completion notices
        "icon_fail": "",                                # Author icon for failure notices
        "timeout": 10.0,                                # HTTP timeout (seconds)
    },
}

_REDACT = "********"

_SECRET_PATHS: list[tuple[str, ...]] = [
    ("anilist", "access_token"),
    ("mattermost", "webhook"),
]

# Flat keys of the original YAML config → nested location
_LEGACY_KEYS: dict[str, tuple[str, str]] = {
    "host": ("server", "host"),
    "port": ("server", "port"),
    "log_level": ("runtime", "log_level"),
    "anilist_token": ("anilist", "access_token"),
    "plex_account": ("plex", "account"),
    "plex_library": ("plex", "libraries"),
}

_ALLOWED_LOG_LEVELS: list[str] = ["silent", "error", "warn", "info", "debug"]


def _redact_path(cfg: dict[str, Any], path: tuple[str, ...]) -> None:
    node: Any = cfg
    for key in path[:-1]:
        if not isinstance(node, dict):
            return
        node = node.get(key)
    if isinstance(node, dict) and node.get(path[-1]):
        node[path[-1]] = _REDACT


def redact_config(cfg: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = copy.deepcopy(cfg or {})
    for path in _SECRET_PATHS:
        _redact_path(out, path)
    return out


# Helpers: paths, IO, merging, normalization
def config_path() -> Path:
    return CONFIG_BASE() / "config.json"


def _read_file(p: Path) -> dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        if p.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[assignment]
        else:
            out[k] = v
    return out


def _migrate_legacy(user_cfg: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = dict(user_cfg or {})
    for flat, (section, key) in _LEGACY_KEYS.items():
        if flat not in out:
            continue
        val = out.pop(flat)
        sec = out.get(section)
        if not isinstance(sec, dict):
            sec = {}
            out[section] = sec
        sec.setdefault(key, val)
    return out


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Iterable):
        return [str(x) for x in value if isinstance(x, (str, int, float))]
    return []


def _ensure_dict(parent: dict[str, Any], key: str) -> dict[str, Any]:
    v = parent.get(key)
    if isinstance(v, dict):
        return cast(dict[str, Any], v)
    d: dict[str, Any] = {}
    parent[key] = d
    return d


def _float(v: Any, default: float) -> float:
    try:
        return float(v)
    except Exception:
        return default


def _int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return default


def _normalize(cfg: dict[str, Any]) -> None:
    srv = _ensure_dict(cfg, "server")
    srv["host"] = str(srv.get("host") or "localhost").strip() or "localhost"
    port = _int(srv.get("port"), 9001)
    srv["port"] = port if 0 < port < 65536 else 9001

    rt = _ensure_dict(cfg, "runtime")
    lvl = str(rt.get("log_level") or "info").strip().lower()
    if lvl == "warning":
        lvl = "warn"
    rt["log_level"] = lvl if lvl in _ALLOWED_LOG_LEVELS else "info"
    rt["log_json"] = str(rt.get("log_json") or "").strip()

    px = _ensure_dict(cfg, "plex")
    px["account"] = str(px.get("account") or "").strip()
    px["libraries"] = [s.strip() for s in _as_list(px.get("libraries")) if s.strip()]
    px["guid_agent"] = str(px.get("guid_agent") or "com.plexapp.agents.hama").strip()

    an = _ensure_dict(cfg, "anilist")
    an["access_token"] = str(an.get("access_token") or "").strip()
    an["timeout"] = max(1.0, _float(an.get("timeout"), 15.0))
    an["max_retries"] = max(1, _int(an.get("max_retries"), 3))

    mp = _ensure_dict(cfg, "mapping")
    mp["url"] = str(mp.get("url") or ANIDB_MAPPING_URL).strip()
    mp["cache_path"] = str(mp.get("cache_path") or ANIDB_MAPPING_PATH).strip()
    mp["overrides_path"] = str(mp.get("overrides_path") or "mapping.yaml").strip()
    mp["max_age_hours"] = max(0.0, _float(mp.get("max_age_hours"), 24.0))
    mp["timeout"] = max(1.0, _float(mp.get("timeout"), 30.0))

    mm = _ensure_dict(cfg, "mattermost")
    for k in ("webhook", "channel", "icon_rate", "icon_fail"):
        mm[k] = str(mm.get(k) or "").strip()
    mm["timeout"] = max(1.0, _float(mm.get("timeout"), 10.0))


# Public API
def load_config(path: str | Path | None = None) -> dict[str, Any]:
    p = Path(path) if path else config_path()
    user_cfg: dict[str, Any] = {}
    if p.exists():
        user_cfg = _read_file(p)

    cfg = _deep_merge(DEFAULT_CFG, _migrate_legacy(user_cfg))
    _normalize(cfg)
    return cfg


@dataclass(frozen=True)
class MappingSettings:
    url: str
    cache_path: Path
    overrides_path: Path
    max_age_hours: float = 24.0
    timeout: float = 30.0


@dataclass(frozen=True)
class MattermostSettings:
    webhook: str = ""
    channel: str = ""
    icon_rate: str = ""
    icon_fail: str = ""
    timeout: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.webhook and self.channel)


@dataclass(frozen=True)
class Settings:
    """Immutable view of the configuration, handed to each component."""

    host: str
    port: int
    log_level: str
    log_json: str
    plex_account: str
    plex_libraries: tuple[str, ...]
    guid_agent: str
    anilist_token: str
    anilist_timeout: float
    anilist_max_retries: int
    mapping: MappingSettings
    mattermost: MattermostSettings

    @classmethod
    def from_config(cls, cfg: dict[str, Any], base: Path | None = None) -> "Settings":
        base = base or CONFIG_BASE()
        srv, rt = cfg["server"], cfg["runtime"]
        px, an, mp, mm = cfg["plex"], cfg["anilist"], cfg["mapping"], cfg["mattermost"]

        overrides = Path(mp["overrides_path"])
        if not overrides.is_absolute():
            overrides = base / overrides

        return cls(
            host=srv["host"],
            port=int(srv["port"]),
            log_level=rt["log_level"],
            log_json=rt["log_json"],
            plex_account=px["account"],
            plex_libraries=tuple(px["libraries"]),
            guid_agent=px["guid_agent"],
            anilist_token=an["access_token"],
            anilist_timeout=float(an["timeout"]),
            anilist_max_retries=int(an["max_retries"]),
            mapping=MappingSettings(
                url=mp["url"],
                cache_path=Path(mp["cache_path"]),
                overrides_path=overrides,
                max_age_hours=float(mp["max_age_hours"]),
                timeout=float(mp["timeout"]),
            ),
            mattermost=MattermostSettings(
                webhook=mm["webhook"],
                channel=mm["channel"],
                icon_rate=mm["icon_rate"],
                icon_fail=mm["icon_fail"],
                timeout=float(mm["timeout"]),
            ),
        )

    def missing(self) -> list[str]:
        out: list[str] = []
        if not self.plex_account:
            out.append("plex.account")
        if not self.anilist_token:
            out.append("anilist.access_token")
        return out
