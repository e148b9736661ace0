# /scrobbler.py
# AniList Plex Scrobbler main application entry point
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI

from _logging import Logger, log as LOG
from api import register as register_api
from providers.scrobble.processor import ScrobbleProcessor
from sc_platform.config_base import CONFIG_BASE, Settings, config_path, load_config, redact_config

__version__ = "1.0.0"


def create_app(settings: Settings | None = None, *, processor: Any = None) -> FastAPI:
    """Build the webhook app; either settings or a ready processor must be supplied."""
    if processor is None:
        if settings is None:
            raise ValueError("create_app needs settings or a processor")
        processor = ScrobbleProcessor.from_settings(settings, LOG)

    app = FastAPI(title="AniList Plex Scrobbler", version=__version__, docs_url=None, redoc_url=None)
    app.state.processor = processor
    app.state.settings = settings
    register_api(app)
    return app


def _explain_missing(missing: list[str], lg: Logger) -> None:
    if "plex.account" in missing:
        lg.error("Missing plex.account in configuration file.")
    if "anilist.access_token" in missing:
        lg.error("Missing anilist.access_token in configuration file (enable debug logging for more info).")
        lg.debug("You can obtain a token by visiting https://anilist.co/settings/developer")
        lg.debug('Click "Create New Client", take note of the client id and specify')
        lg.debug("https://anilist.co/api/v2/oauth/pin as the redirect URL.")
        lg.debug("Approve the token by visiting")
        lg.debug("https://anilist.co/api/v2/oauth/authorize?client_id={clientID}&response_type=token")
        lg.debug("make sure to replace {clientID} with the one you noted down before.")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="anilist-plex-scrobbler", description="Relay Plex scrobbles to AniList.")
    ap.add_argument("--config", help="path to config.json / config.yaml (default: <CONFIG_BASE>/config.json)")
    ap.add_argument("--host", help="override server.host")
    ap.add_argument("--port", type=int, help="override server.port")
    return ap.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    lg = LOG.child("MAIN")
    lg.info("Starting AniList Plex Scrobbler ...")

    path = Path(args.config) if args.config else config_path()
    if not path.exists():
        lg.warn(f"Config file {path} does not exist, using defaults.")
    try:
        cfg = load_config(path)
    except Exception as e:
        lg.error(f"Unable to load config file {path}: {e}")
        return 1

    if args.host:
        cfg["server"]["host"] = args.host
    if args.port:
        cfg["server"]["port"] = args.port

    base = path.parent if args.config else CONFIG_BASE()
    settings = Settings.from_config(cfg, base=base)
    LOG.set_level(settings.log_level)
    if settings.log_json:
        LOG.enable_json(settings.log_json)
    lg.debug(f"Using settings: {redact_config(cfg)}")

    missing = settings.missing()
    if missing:
        _explain_missing(missing, lg)
        return 1

    app = create_app(settings)
    lg.info(f"Listening on {settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=("debug" if settings.log_level == "debug" else "warning"),
        access_log=settings.log_level == "debug",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
