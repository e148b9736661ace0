# Scrobbler test scripts
from __future__ import annotations

import json

from conftest import make_event, plex_payload
from providers.scrobble.scrobble import EventFilter, correlation_key, from_plex_webhook


def _filter() -> EventFilter:
    return EventFilter("alice", ["Anime"])


def test_from_plex_webhook_reads_metadata() -> None:
    ev = from_plex_webhook(plex_payload())
    assert ev is not None
    assert ev.event == "media.scrobble"
    assert ev.account == "alice"
    assert ev.library == "Anime"
    assert ev.media_type == "episode"
    assert (ev.season, ev.episode) == (1, 4)
    assert ev.label == "Show - S1E4 - Episode"


def test_from_plex_webhook_accepts_form_and_text() -> None:
    body = json.dumps(plex_payload())
    assert from_plex_webhook({"payload": body}) == from_plex_webhook(body)
    assert from_plex_webhook(body.encode("utf-8")) is not None


def test_from_plex_webhook_rejects_garbage() -> None:
    assert from_plex_webhook("{not json") is None
    assert from_plex_webhook({"Metadata": {"index": "four"}}) is None


def test_from_plex_webhook_tolerates_missing_sections() -> None:
    ev = from_plex_webhook({"event": "media.play"})
    assert ev is not None
    assert ev.account == ""
    assert ev.episode is None


def test_filter_admits_matching_scrobble() -> None:
    adm = _filter().check(make_event())
    assert adm.admitted
    assert adm.source_id == "1234"


def test_filter_accepts_guid_without_episode_suffix() -> None:
    adm = _filter().check(make_event(guid="com.plexapp.agents.hama://anidb-77?lang=ja"))
    assert adm.source_id == "77"


def test_filter_rejects_in_order() -> None:
    f = _filter()
    assert f.check(make_event(event="media.play")).reason == "not_scrobble"
    assert f.check(make_event(account="bob")).reason == "wrong_account"
    assert f.check(make_event(library="Movies")).reason == "wrong_library"
    assert f.check(make_event(media_type="movie")).reason == "not_episode"
    assert f.check(make_event(library_type="movie")).reason == "not_episode"
    # account is checked before library
    assert f.check(make_event(account="bob", library="Movies")).reason == "wrong_account"


def test_filter_rejects_foreign_or_malformed_guid() -> None:
    f = _filter()
    assert f.check(make_event(guid="plex://episode/5d9c08")).reason == "no_identifier"
    assert f.check(make_event(guid="com.plexapp.agents.hama://tvdb-1234/1/4?lang=en")).reason == "no_identifier"
    assert f.check(make_event(guid="com.plexapp.agents.hama://anidb-x?lang=en")).reason == "no_identifier"


def test_filter_libraries_allowlist() -> None:
    f = EventFilter("alice", ["Anime", "Anime (Kids)"])
    assert f.check(make_event(library="Anime (Kids)")).admitted


def test_correlation_key_is_stable_per_delivery() -> None:
    a = make_event()
    assert correlation_key(a) == correlation_key(make_event())
    assert correlation_key(a) != correlation_key(make_event(episode=5))
    assert len(correlation_key(a)) == 8
