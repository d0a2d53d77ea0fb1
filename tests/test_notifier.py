"""Tests for the webhook notifier."""

from datetime import UTC, datetime
from urllib.parse import parse_qs

import httpx
import pytest

from alert_spine.errors import NotifierError
from alert_spine.models import AlertResult
from alert_spine.notifier import WebhookNotifier, external_state, no_notification

TS = datetime(2025, 4, 4, 10, tzinfo=UTC)


def make_notifier(handler, url="https://alerts.example.com/hook", id_group="prod"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return WebhookNotifier(url, id_group, client=client)


class TestExternalState:
    def test_mapping(self):
        assert external_state("OK") == "NORMAL"
        assert external_state("warn") == "WARNING"
        assert external_state("error") == "ERROR"
        assert external_state("anything else") == "ERROR"


class TestWebhookNotifier:
    def test_posts_form(self, make_definition):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        notifier = make_notifier(handler)
        notifier.notify(make_definition(channel="#ops"), AlertResult("error", "too many", TS))

        request = seen[0]
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form == {
            "group": "dashica_prod",
            "id": "group1#alert1",
            "state": "ERROR",
            "message": "too many",
            "slack_channel": "#ops",
        }

    def test_channel_omitted_when_unset(self, make_definition):
        notifier = make_notifier(lambda r: httpx.Response(200))
        form = notifier.form_for(make_definition(), AlertResult("OK", "", TS))
        assert "slack_channel" not in form
        assert form["state"] == "NORMAL"

    def test_non_200_raises(self, make_definition):
        notifier = make_notifier(lambda r: httpx.Response(503, text="unavailable"))
        with pytest.raises(NotifierError, match="request failed with status 503: unavailable"):
            notifier.notify(make_definition(), AlertResult("OK", "", TS))

    def test_transport_error_raises(self, make_definition):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier = make_notifier(handler)
        with pytest.raises(NotifierError, match="failed to send request"):
            notifier.notify(make_definition(), AlertResult("OK", "", TS))

    def test_empty_url_skips_delivery(self, make_definition):
        calls = []
        notifier = make_notifier(lambda r: calls.append(r) or httpx.Response(200), url="")
        notifier.notify(make_definition(), AlertResult("OK", "", TS))
        assert calls == []

    def test_bind_defers_delivery(self, make_definition):
        calls = []
        notifier = make_notifier(lambda r: calls.append(r) or httpx.Response(200))
        bound = notifier.bind(make_definition(), AlertResult("OK", "", TS))
        assert calls == []
        bound()
        assert len(calls) == 1

    def test_no_notification(self):
        assert no_notification() is None
