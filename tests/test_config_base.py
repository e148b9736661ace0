# Scrobbler test scripts
from __future__ import annotations

import json
from pathlib import Path

import pytest

from sc_platform.config_base import DEFAULT_CFG, Settings, config_path, load_config, redact_config


def test_defaults_when_no_file(config_base: Path) -> None:
    cfg = load_config()
    assert config_path() == config_base / "config.json"
    assert cfg["server"] == {"host": "localhost", "port": 9001}
    assert cfg["plex"]["libraries"] == ["Anime"]
    assert cfg["mapping"]["max_age_hours"] == 24
    assert DEFAULT_CFG["plex"]["account"] == ""


def test_json_config_is_merged_over_defaults(config_base: Path) -> None:
    (config_base / "config.json").write_text(
        json.dumps({"plex": {"account": "alice"}, "anilist": {"access_token": "tok"}}), encoding="utf-8"
    )
    cfg = load_config()
    assert cfg["plex"]["account"] == "alice"
    assert cfg["plex"]["libraries"] == ["Anime"]
    assert cfg["anilist"]["timeout"] == 15.0


def test_legacy_flat_yaml_is_migrated(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text(
        "host: 0.0.0.0\n"
        "port: 8080\n"
        "log_level: warning\n"
        "anilist_token: tok\n"
        "plex_account: alice\n"
        "plex_library: Anime\n"
        "mattermost:\n"
        "  webhook: https://chat/hooks/x\n"
        "  channel: anime\n",
        encoding="utf-8",
    )
    cfg = load_config(p)
    assert cfg["server"] == {"host": "0.0.0.0", "port": 8080}
    assert cfg["runtime"]["log_level"] == "warn"
    assert cfg["anilist"]["access_token"] == "tok"
    assert cfg["plex"]["account"] == "alice"
    assert cfg["plex"]["libraries"] == ["Anime"]
    assert cfg["mattermost"]["channel"] == "anime"
    assert "host" not in cfg


def test_invalid_values_are_normalized(tmp_path: Path) -> None:
    p = tmp_path / "config.json"
    p.write_text(
        json.dumps({
            "server": {"port": 99999},
            "runtime": {"log_level": "LOUD"},
            "anilist": {"max_retries": 0, "timeout": "abc"},
        }),
        encoding="utf-8",
    )
    cfg = load_config(p)
    assert cfg["server"]["port"] == 9001
    assert cfg["runtime"]["log_level"] == "info"
    assert cfg["anilist"]["max_retries"] == 1
    assert cfg["anilist"]["timeout"] == 15.0


def test_malformed_file_raises(tmp_path: Path) -> None:
    p = tmp_path / "config.json"
    p.write_text("{oops", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(p)


def test_redact_hides_secrets() -> None:
    cfg = load_config(Path("/nonexistent/config.json"))
    cfg["anilist"]["access_token"] = "secret"
    cfg["mattermost"]["webhook"] = "https://chat/hooks/x"
    out = redact_config(cfg)
    assert out["anilist"]["access_token"] == "********"
    assert out["mattermost"]["webhook"] == "********"
    assert cfg["anilist"]["access_token"] == "secret"


def test_settings_resolve_overrides_relative_to_base(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "none.json")
    cfg["plex"]["account"] = "alice"
    s = Settings.from_config(cfg, base=tmp_path)
    assert s.mapping.overrides_path == tmp_path / "mapping.yaml"
    assert s.mapping.cache_path == Path("/var/tmp/anidb.map")
    assert s.plex_libraries == ("Anime",)
    assert not s.mattermost.enabled
    assert s.missing() == ["anilist.access_token"]


def test_settings_missing_both_required_values(config_base: Path) -> None:
    s = Settings.from_config(load_config())
    assert s.missing() == ["plex.account", "anilist.access_token"]
