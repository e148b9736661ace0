# /providers/anilist/_common.py
# Shared HTTP helpers for the AniList provider
from __future__ import annotations

import time
from typing import Any, Callable, Mapping

import requests

from _logging import Logger, log as BASE_LOG

__all__ = [
    "HitSession",
    "build_session",
    "parse_rate_limit",
    "request_with_retries",
]

FeatureLabelFn = Callable[[str, str, Mapping[str, Any]], str]


def default_feature_label(provider: str, method: str, url: str, kw: Mapping[str, Any]) -> str:
    return f"{provider.lower()}:{method.lower()}"


class HitSession(requests.Session):
    """requests.Session that logs every API hit with a feature label at debug level."""

    def __init__(
        self,
        provider: str,
        logger: Logger | None = None,
        feature_label: FeatureLabelFn | None = None,
    ):
        super().__init__()
        self._provider = provider
        self._log = logger or BASE_LOG.child(provider)
        self._label = feature_label or (lambda m, u, kw: default_feature_label(provider, m, u, kw))

    def request(self, method: str, url: str, *args: Any, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        start = time.perf_counter()
        status: int | str = "error"
        try:
            resp = super().request(method, url, *args, **kwargs)
            status = resp.status_code
            return resp
        finally:
            try:
                feature = self._label(method.upper(), url, kwargs)
            except Exception:
                feature = "unknown"
            ms = int((time.perf_counter() - start) * 1000)
            self._log.debug(f"api hit feature={feature} status={status} latency_ms={ms}")


def build_session(
    provider: str,
    logger: Logger | None = None,
    *,
    feature_label: FeatureLabelFn | None = None,
) -> HitSession:
    return HitSession(provider, logger, feature_label)


def parse_rate_limit(h: Mapping[str, Any]) -> dict[str, int | None]:
    def _i(x: Any) -> int | None:
        try:
            return int(x)
        except Exception:
            return None

    return {
        "limit": _i(h.get("X-RateLimit-Limit")),
        "remaining": _i(h.get("X-RateLimit-Remaining")),
        "reset": _i(h.get("X-RateLimit-Reset")),
    }


def request_with_retries(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = 10.0,
    max_retries: int = 3,
    retry_on: tuple[int, ...] = (429, 500, 502, 503, 504),
    backoff_base: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> requests.Response:
    """Issue a request, retrying transport errors and retryable statuses with exponential backoff.

    Returns the last response when every attempt hit a retryable status; raises
    ``requests.RequestException`` when the last attempt failed at the transport level.
    """
    attempts = max(1, int(max_retries))
    last_exc: Exception | None = None
    for i in range(attempts):
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            last_exc = e
            if i < attempts - 1:
                sleep(backoff_base * (2**i))
                continue
            break
        if resp.status_code in retry_on and i < attempts - 1:
            wait = backoff_base * (2**i)
            if resp.status_code == 429:
                try:
                    wait = max(wait, float(resp.headers.get("Retry-After") or 0))
                except ValueError:
                    pass
            sleep(min(wait, 60.0))
            continue
        return resp
    raise requests.RequestException(f"request failed after {attempts} attempt(s): {method} {url}") from last_exc
