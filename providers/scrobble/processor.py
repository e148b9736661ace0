# providers/scrobble/processor.py
# Scrobble pipeline: filter → resolve → reconcile.
from __future__ import annotations

from typing import Any

from _logging import Logger, log as BASE_LOG
from providers.anilist.client import ANILISTClient
from providers.notify.mattermost import build_notifier
from providers.scrobble.anilist.sink import ProgressReconciler
from providers.scrobble.id_map import IdentifierResolver
from providers.scrobble.scrobble import EventFilter, ScrobbleEvent, correlation_key, from_plex_webhook
from sc_platform.config_base import Settings


class ScrobbleProcessor:
    def __init__(
        self,
        event_filter: EventFilter,
        resolver: IdentifierResolver,
        reconciler: ProgressReconciler,
        *,
        logger: Logger | None = None,
    ) -> None:
        self.event_filter = event_filter
        self.resolver = resolver
        self.reconciler = reconciler
        self._log = logger or BASE_LOG.child("SCROBBLE")

    @classmethod
    def from_settings(cls, settings: Settings, logger: Logger | None = None) -> "ScrobbleProcessor":
        lg = logger or BASE_LOG
        client = ANILISTClient(
            settings.anilist_token,
            timeout=settings.anilist_timeout,
            max_retries=settings.anilist_max_retries,
            logger=lg.child("ANILIST"),
        )
        return cls(
            EventFilter(settings.plex_account, settings.plex_libraries, agent=settings.guid_agent, logger=lg.child("SCROBBLE")),
            IdentifierResolver(settings.mapping, logger=lg.child("MAPPING")),
            ProgressReconciler(client, build_notifier(settings.mattermost, lg.child("NOTIFY")), logger=lg.child("ANILIST")),
            logger=lg.child("SCROBBLE"),
        )

    def handle(self, payload: Any) -> dict[str, Any]:
        ev = from_plex_webhook(payload)
        if ev is None:
            self._log.warn("Unable to parse webhook payload.")
            return {"ok": True, "ignored": True, "reason": "bad_payload"}
        return self.process(ev)

    def process(self, ev: ScrobbleEvent) -> dict[str, Any]:
        reqid = correlation_key(ev)

        adm = self.event_filter.check(ev, reqid)
        if not adm.admitted or adm.source_id is None:
            return {"ok": True, "ignored": True, "reason": adm.reason, "reqid": reqid}

        res = self.resolver.resolve(adm.source_id)
        if not res.ok:
            self._log.error(
                f"[{reqid}] Unable to map extracted anidb id {res.source_id} to an anilist id "
                f"({res.error}{'' if res.value is None else f': {res.value!r}'})!"
            )
            return {"ok": False, "error": res.error, "anidb_id": res.source_id, "reqid": reqid}

        self._log.info(f"[{reqid}] Extracted anidb id {res.source_id} maps to anilist id {res.target_id}")
        self._log.info(f"[{reqid}] Media Info: {ev.label}")

        results = self.reconciler.reconcile(ev, int(res.target_id or 0), reqid=reqid)
        return {
            "ok": not any(r.outcome == "failed" for r in results),
            "anidb_id": res.source_id,
            "anilist_id": res.target_id,
            "results": [r.as_dict() for r in results],
            "reqid": reqid,
        }
