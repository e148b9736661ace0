# /api/webhookAPI.py
# Plex webhook endpoint
from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qs

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from _logging import log as BASE_LOG

router = APIRouter(tags=["webhook"])

PLEX_UA_PREFIX = "PlexMediaServer/"

_LOG = BASE_LOG.child("WEBHOOK")


async def _read_payload(request: Request) -> Any:
    ct = (request.headers.get("content-type") or "").lower()
    if "multipart/form-data" in ct:
        form = await request.form()
        try:
            part = form.get("payload")
            if part is None:
                raise ValueError("multipart: no 'payload' part")
            if isinstance(part, str):
                return json.loads(part)
            data = await part.read()
            return json.loads(data.decode("utf-8", errors="replace"))
        finally:
            # uploaded thumbnails are spooled to temp files; close them
            await form.close()

    raw = await request.body()
    if "application/x-www-form-urlencoded" in ct:
        d = parse_qs(raw.decode("utf-8", errors="replace"))
        if not d.get("payload"):
            raise ValueError("urlencoded: no 'payload' key")
        return json.loads(d["payload"][0])
    return json.loads(raw.decode("utf-8", errors="replace")) if raw else {}


async def _handle(request: Request) -> JSONResponse:
    ua = request.headers.get("user-agent") or ""
    if not ua.startswith(PLEX_UA_PREFIX):
        _LOG.warn(f"Ignoring request from user-agent: {ua}.")
        return JSONResponse({"ok": False, "error": "bad_user_agent"}, status_code=400)

    try:
        payload = await _read_payload(request)
    except ValueError as e:
        _LOG.error(f"plex-webhook: failed to parse payload: {e}")
        return JSONResponse({"ok": True, "ignored": True, "reason": "bad_payload"}, status_code=200)

    processor = request.app.state.processor
    try:
        res = await run_in_threadpool(processor.handle, payload)
    except Exception as e:
        _LOG.error(f"plex-webhook: processing raised: {e}")
        return JSONResponse({"ok": False, "error": "internal"}, status_code=200)
    return JSONResponse(res, status_code=200)


@router.post("/")
async def webhook_root(request: Request) -> JSONResponse:
    return await _handle(request)


@router.post("/webhook/plexanilist")
async def webhook_plexanilist(request: Request) -> JSONResponse:
    return await _handle(request)


@router.get("/api/health")
def api_health(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True, "version": getattr(request.app, "version", "")})
