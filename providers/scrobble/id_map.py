# providers/scrobble/id_map.py
# anidb → anilist id resolution: hand-maintained overrides merged over a cached remote catalog.
from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal, Mapping

import requests
import yaml

from _logging import Logger, log as BASE_LOG
from sc_platform.config_base import MappingSettings

ResolutionErrorKind = Literal["not_found", "invalid"]

CACHE_MODE = 0o644


@dataclass(frozen=True)
class Resolution:
    source_id: str
    target_id: int | None = None
    error: ResolutionErrorKind | None = None
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.target_id is not None


def _to_target(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, float) and not v.is_integer():
        return None
    try:
        n = int(v)
    except (TypeError, ValueError):
        return None
    return n if n >= 1 else None


def load_overrides(path: Path, logger: Logger | None = None) -> dict[str, Any]:
    """Read the override table; a missing or malformed file yields an empty table."""
    lg = logger or BASE_LOG.child("MAPPING")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        lg.debug(f"No custom mapping file at {path}.")
        return {}
    except (OSError, yaml.YAMLError) as e:
        lg.debug(f"Unable to load custom mapping file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k).strip(): v for k, v in data.items()}


class IdentifierResolver:
    def __init__(
        self,
        settings: MappingSettings,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
        logger: Logger | None = None,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self._clock = clock
        self._log = logger or BASE_LOG.child("MAPPING")
        self._lock = threading.Lock()
        self._catalog: Mapping[str, Any] = {}
        self._catalog_mtime: float | None = None

    # --- catalog cache ---------------------------------------------------------
    @property
    def cache_path(self) -> Path:
        return self.settings.cache_path

    def _cache_mtime(self) -> float | None:
        try:
            return self.cache_path.stat().st_mtime
        except OSError:
            return None

    def is_stale(self) -> bool:
        mtime = self._cache_mtime()
        if mtime is None:
            return True
        age_h = (self._clock() - mtime) / 3600.0
        return age_h >= self.settings.max_age_hours

    def refresh(self) -> bool:
        """Download the catalog and atomically replace the cache file."""
        p = self.cache_path
        self._log.debug(f"Mapping is out of date, updating from {self.settings.url} ...")
        try:
            r = self.session.get(self.settings.url, timeout=self.settings.timeout)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            self._log.warn(f"Mapping refresh failed: {e}")
            return False
        if not isinstance(data, dict):
            self._log.warn(f"Mapping refresh returned {type(data).__name__}, expected an object.")
            return False

        tmp = p.with_name(f"{p.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.chmod(tmp, CACHE_MODE)
            os.replace(tmp, p)
        except OSError as e:
            self._log.warn(f"Unable to write mapping cache {p}: {e}")
            try:
                tmp.unlink()
            except OSError:
                pass
            return False

        self._catalog = data
        self._catalog_mtime = self._cache_mtime()
        self._log.info(f"Mapping updated ({len(data)} entries).")
        return True

    def _reload(self) -> None:
        mtime = self._cache_mtime()
        if mtime is None or mtime == self._catalog_mtime:
            return
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self._log.warn(f"Unable to read mapping cache {self.cache_path}: {e}")
            return
        if isinstance(data, dict):
            self._catalog = data
            self._catalog_mtime = mtime

    def catalog(self) -> Mapping[str, Any]:
        """Return a consistent catalog snapshot, refreshing it first when stale."""
        with self._lock:
            if self.is_stale():
                if not self.refresh():
                    self._log.warn("Using last known mapping cache.")
            else:
                self._log.debug("Mapping is up to date.")
            self._reload()
            return self._catalog

    # --- resolution ------------------------------------------------------------
    def resolve(self, source_id: str) -> Resolution:
        sid = str(source_id).strip()
        catalog = self.catalog()
        overrides = load_overrides(self.settings.overrides_path, self._log)

        if sid in overrides:
            value = overrides[sid]
        elif sid in catalog:
            ent = catalog[sid]
            value = ent.get("anilist_id") if isinstance(ent, Mapping) else None
        else:
            return Resolution(sid, error="not_found")

        target = _to_target(value)
        if target is None:
            return Resolution(sid, error="invalid", value=value)
        return Resolution(sid, target_id=target)
