from __future__ import annotations

from fastapi import FastAPI

from .webhookAPI import router as webhook_router

__all__ = ["webhook_router", "register"]


def register(app: FastAPI) -> None:
    app.include_router(webhook_router)
