"""
Tests for webhook alerting.
"""

import logging
from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from canary_releaser.alerts import WebhookAlertHandler, install_alert_handler


def make_record(message="rollback to v1 failed", level=logging.ERROR, **attrs):
    record = logging.LogRecord("canary_releaser", level, __file__, 1, message, None, None)
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def handler():
    handler = WebhookAlertHandler("https://hooks.example.test/T000", channel="#deploys")
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


class TestPayload:
    def test_includes_host_level_and_channel(self, handler):
        payload = handler.build_payload(make_record(host="web-3"))
        assert payload == {
            "text": "[web-3] ERROR: rollback to v1 failed",
            "channel": "#deploys",
        }

    def test_without_host_or_channel(self):
        handler = WebhookAlertHandler("https://hooks.example.test/T000")
        payload = handler.build_payload(make_record())
        assert payload == {"text": "ERROR: rollback to v1 failed"}


class TestDelivery:
    def test_emit_posts_in_background(self, handler):
        with patch("canary_releaser.alerts.threading.Thread") as thread_cls:
            handler.emit(make_record(host="web-3"))

        thread_cls.assert_called_once()
        kwargs = thread_cls.call_args.kwargs
        assert kwargs["daemon"] is True
        assert kwargs["args"][0]["text"].startswith("[web-3] ERROR")
        thread_cls.return_value.start.assert_called_once()

    def test_post(self, handler):
        client = MagicMock()
        client.__enter__.return_value = client
        client.post.return_value = Mock(status_code=200)

        with patch("canary_releaser.alerts.httpx.Client", return_value=client):
            handler._post({"text": "hi"})

        client.post.assert_called_once_with("https://hooks.example.test/T000", json={"text": "hi"})

    def test_post_failure_is_not_raised(self, handler):
        client = MagicMock()
        client.__enter__.return_value = client
        client.post.side_effect = httpx.ConnectError("refused")

        with patch("canary_releaser.alerts.httpx.Client", return_value=client):
            handler._post({"text": "hi"})

    def test_only_errors_are_sent(self, handler):
        log = logging.getLogger("canary_releaser.tests.alerts")
        log.propagate = False
        log.addHandler(handler)
        try:
            with patch("canary_releaser.alerts.threading.Thread") as thread_cls:
                log.warning("lock held elsewhere")
                assert thread_cls.call_count == 0
                log.error("deploy failed")
                assert thread_cls.call_count == 1
        finally:
            log.removeHandler(handler)


class TestInstall:
    def test_no_url_no_handler(self):
        assert install_alert_handler(None) is None
        assert install_alert_handler("") is None

    def test_attaches_to_root_logger(self):
        root = logging.getLogger()
        handler = install_alert_handler("https://hooks.example.test/T000", "#ops")
        try:
            assert handler in root.handlers
            assert handler.channel == "#ops"
        finally:
            root.removeHandler(handler)
