"""Tests for the channel sinks and their factory (network calls mocked)."""

from unittest.mock import patch

import httpx
import pytest

from notify_engine.config import Settings
from notify_engine.integrations.channels import SendResult, create_channel_sinks
from notify_engine.integrations.email import (
    SmtpEmailSink,
    build_message,
    decrypt_value,
    encrypt_value,
)
from notify_engine.integrations.gateway import HttpGatewaySink, WebhookSink
from notify_engine.notifications.enums import Channel, DeliveryStatus


@pytest.fixture
def smtp_settings():
    return Settings(
        _env_file=None,
        smtp_user="office@school.test",
        smtp_password="app-password",
        secret_key="test-secret",
    )


def _response(status_code=200, json=None, headers=None):
    request = httpx.Request("POST", "https://gateway.test/send")
    return httpx.Response(status_code, json=json, headers=headers, request=request)


class TestSendResult:
    def test_sent_is_ok(self):
        assert SendResult.sent("abc").ok is True

    def test_failed_carries_error(self):
        result = SendResult.failed("boom")
        assert result.ok is False
        assert result.status == DeliveryStatus.FAILED
        assert result.error == "boom"


class TestEncryption:
    def test_decrypt_reverses_encrypt(self):
        token = encrypt_value("app-password", "secret")
        assert token.startswith("gAAAAA")
        assert decrypt_value(token, "secret") == "app-password"


class TestSmtpEmailSink:
    def test_message_headers_and_parts(self, smtp_settings):
        msg = build_message(smtp_settings, "parent@home.test", "Fee due", "Pay by Friday\n\nThanks")

        assert msg["To"] == "parent@home.test"
        assert msg["Subject"] == "Fee due"
        assert "school.test" in msg["Message-ID"]
        assert [part.get_content_type() for part in msg.get_payload()] == ["text/plain", "text/html"]

    @patch("notify_engine.integrations.email.smtplib.SMTP")
    def test_send_logs_in_with_decrypted_password(self, mock_smtp, smtp_settings):
        smtp_settings.smtp_password = encrypt_value("app-password", smtp_settings.secret_key)
        server = mock_smtp.return_value.__enter__.return_value

        result = SmtpEmailSink(smtp_settings).send(Channel.EMAIL, "parent@home.test", "Hi", "Body")

        assert result.ok is True
        assert result.provider_ref
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("office@school.test", "app-password")
        server.send_message.assert_called_once()

    @patch("notify_engine.integrations.email.smtplib.SMTP")
    def test_send_failure_is_reported(self, mock_smtp, smtp_settings):
        mock_smtp.side_effect = OSError("connection refused")

        result = SmtpEmailSink(smtp_settings).send(Channel.EMAIL, "parent@home.test", "Hi", "Body")

        assert result.status == DeliveryStatus.FAILED
        assert "connection refused" in result.error


class TestHttpGatewaySink:
    @patch("notify_engine.integrations.gateway.httpx.post")
    def test_posts_payload_and_reads_ref(self, mock_post):
        mock_post.return_value = _response(json={"id": "msg-42"})

        result = HttpGatewaySink("https://gateway.test/send", api_key="k").send(Channel.SMS, "+1555", "Hi", "Body")

        assert result.provider_ref == "msg-42"
        _, kwargs = mock_post.call_args
        assert kwargs["json"] == {"channel": "SMS", "to": "+1555", "title": "Hi", "body": "Body"}
        assert kwargs["headers"] == {"Authorization": "Bearer k"}

    @patch("notify_engine.integrations.gateway.httpx.post")
    def test_error_status(self, mock_post):
        mock_post.return_value = _response(status_code=503)

        result = HttpGatewaySink("https://gateway.test/send").send(Channel.PUSH, "token", "Hi", "Body")

        assert result.error == "gateway returned 503"

    @patch("notify_engine.integrations.gateway.httpx.post")
    def test_unreachable(self, mock_post):
        mock_post.side_effect = httpx.ConnectError("no route")

        result = HttpGatewaySink("https://gateway.test/send").send(Channel.SMS, "+1555", "Hi", "Body")

        assert result.ok is False
        assert result.error.startswith("gateway unreachable")


class TestWebhookSink:
    def test_rejects_non_http_url(self):
        result = WebhookSink().send(Channel.WEBHOOK, "ftp://files.test", "Hi", "Body")
        assert result.error == "invalid webhook url: ftp://files.test"

    @patch("notify_engine.integrations.gateway.httpx.post")
    def test_posts_to_recipient_url(self, mock_post):
        mock_post.return_value = _response(headers={"X-Request-ID": "req-1"})

        result = WebhookSink().send(Channel.WEBHOOK, "https://hooks.test/x", "Hi", "Body")

        assert result.provider_ref == "req-1"
        assert mock_post.call_args.args[0] == "https://hooks.test/x"

    @patch("notify_engine.integrations.gateway.httpx.post")
    def test_error_status(self, mock_post):
        mock_post.return_value = _response(status_code=404)

        result = WebhookSink().send(Channel.WEBHOOK, "https://hooks.test/x", "Hi", "Body")

        assert result.error == "webhook returned 404"


class TestCreateChannelSinks:
    def test_only_webhook_without_configuration(self):
        sinks = create_channel_sinks(Settings(_env_file=None))
        assert set(sinks) == {Channel.WEBHOOK}

    def test_configured_channels(self, smtp_settings):
        smtp_settings.sms_gateway_url = "https://sms.test"
        smtp_settings.push_gateway_url = "https://push.test"

        sinks = create_channel_sinks(smtp_settings)

        assert isinstance(sinks[Channel.EMAIL], SmtpEmailSink)
        assert isinstance(sinks[Channel.SMS], HttpGatewaySink)
        assert isinstance(sinks[Channel.PUSH], HttpGatewaySink)
        assert isinstance(sinks[Channel.WEBHOOK], WebhookSink)

