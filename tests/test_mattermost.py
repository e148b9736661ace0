# Scrobbler test scripts
from __future__ import annotations

import json

import requests
import responses

from providers.notify.mattermost import MattermostNotifier, NullNotifier, build_notifier
from sc_platform.config_base import MattermostSettings

HOOK = "https://chat.example.test/hooks/abc"


def _settings(**kw) -> MattermostSettings:
    base = {"webhook": HOOK, "channel": "anime", "icon_rate": "https://x/rate.png", "icon_fail": "https://x/fail.png"}
    base.update(kw)
    return MattermostSettings(**base)


def test_build_notifier_requires_webhook_and_channel() -> None:
    assert isinstance(build_notifier(_settings()), MattermostNotifier)
    assert isinstance(build_notifier(_settings(channel="")), NullNotifier)
    assert isinstance(build_notifier(_settings(webhook="")), NullNotifier)


def test_completion_payload() -> None:
    n = MattermostNotifier(_settings())
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, HOOK, body="ok", status=200)
        n.notify_completion("Frieren", "https://anilist.co/anime/154587")
        body = json.loads(rsps.calls[0].request.body)

    assert body["channel"] == "anime"
    (att,) = body["attachments"]
    assert att["color"] == "#00cc00"
    assert att["author_name"] == "Scrobbler"
    assert att["author_icon"] == "https://x/rate.png"
    assert att["title"] == "Frieren"
    assert att["text"] == "This show is now marked as completed, don't forget to [rate](https://anilist.co/anime/154587) it!"


def test_failure_payload() -> None:
    n = MattermostNotifier(_settings())
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, HOOK, body="ok", status=200)
        n.notify_failure("Frieren", 1, 4, "Failed to update progress: boom")
        body = json.loads(rsps.calls[0].request.body)

    (att,) = body["attachments"]
    assert att["color"] == "#dc143c"
    assert att["author_icon"] == "https://x/fail.png"
    assert att["title"] == "Frieren - S1E4"
    assert att["text"] == "Failed to update progress: boom"


def test_disabled_notifier_sends_nothing() -> None:
    n = MattermostNotifier(_settings(webhook=""))
    with responses.RequestsMock() as rsps:
        n.notify_completion("x", "y")
        assert len(rsps.calls) == 0


def test_post_errors_are_swallowed() -> None:
    n = MattermostNotifier(_settings())
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, HOOK, body=requests.ConnectionError("down"))
        n.notify_failure("x", 1, 1, "reason")

    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, HOOK, body="nope", status=500)
        assert n._post({"text": "x"}) is False
