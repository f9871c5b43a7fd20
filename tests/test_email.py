"""Tests for the SMTP email sender and email transport."""
import os
import smtplib
import pytest
from unittest.mock import patch, MagicMock

from notifications.email_sender import EmailSender
from notifications.transports import EmailTransport, TransportError

CONFIGURED = {
    "smtp_host": "smtp.test.com",
    "smtp_port": 587,
    "from_address": "ops@test.com",
    "to_address": "oncall@test.com",
    "smtp_username": "user",
    "smtp_password": "pass",
}

MESSAGE = {"severity": "critical", "title": "Issue Creation Velocity Threshold Exceeded",
           "description": "Issue Creation Velocity is 9.2 (threshold: 8)"}


def _mock_smtp(mock_smtp_class):
    mock_server = MagicMock()
    mock_smtp_class.return_value.__enter__ = MagicMock(return_value=mock_server)
    mock_smtp_class.return_value.__exit__ = MagicMock(return_value=False)
    return mock_server


@pytest.fixture(autouse=True)
def _no_smtp_env():
    with patch.dict("os.environ", {}):
        os.environ.pop("OPSWATCH_SMTP_USER", None)
        os.environ.pop("OPSWATCH_SMTP_PASS", None)
        yield


class TestEmailSender:
    def test_not_configured_missing_fields(self):
        assert EmailSender({}).is_configured() is False

    def test_configured_with_all_fields(self):
        assert EmailSender(CONFIGURED).is_configured() is True

    def test_env_vars_override_config(self):
        with patch.dict("os.environ", {"OPSWATCH_SMTP_USER": "env_user", "OPSWATCH_SMTP_PASS": "env_pass"}):
            sender = EmailSender(CONFIGURED)
            assert sender.username == "env_user"
            assert sender.password == "env_pass"

    def test_config_used_without_env_vars(self):
        sender = EmailSender(CONFIGURED)
        assert sender.username == "user"
        assert sender.password == "pass"

    def test_send_alert_returns_false_when_not_configured(self):
        assert EmailSender({}).send_alert(MESSAGE) is False

    def test_empty_digest_is_a_noop(self):
        assert EmailSender({}).send_digest([]) is True

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_send_alert_success(self, mock_smtp_class):
        mock_server = _mock_smtp(mock_smtp_class)
        assert EmailSender(CONFIGURED).send_alert(MESSAGE) is True
        sent = mock_server.send_message.call_args[0][0]
        assert sent["Subject"] == "[CRITICAL] opswatch: Issue Creation Velocity Threshold Exceeded"
        assert sent["To"] == "oncall@test.com"
        mock_server.starttls.assert_called_once()

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_send_digest_success(self, mock_smtp_class):
        mock_server = _mock_smtp(mock_smtp_class)
        result = EmailSender(CONFIGURED).send_digest([MESSAGE, {**MESSAGE, "severity": "warning"}])
        assert result is True
        sent = mock_server.send_message.call_args[0][0]
        assert sent["Subject"] == "opswatch alert digest (2)"
        html = sent.get_payload()[1].get_payload(decode=True).decode()
        assert "WARNING" in html and "CRITICAL" in html

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_html_is_escaped(self, mock_smtp_class):
        mock_server = _mock_smtp(mock_smtp_class)
        EmailSender(CONFIGURED).send_alert({**MESSAGE, "description": "<script>x</script>"})
        html = mock_server.send_message.call_args[0][0].get_payload()[1].get_payload(decode=True).decode()
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_auth_failure_returns_false(self, mock_smtp_class):
        mock_server = _mock_smtp(mock_smtp_class)
        mock_server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"Bad credentials")
        assert EmailSender(CONFIGURED).send_alert(MESSAGE) is False

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_test_connection_ok(self, mock_smtp_class):
        _mock_smtp(mock_smtp_class)
        assert EmailSender(CONFIGURED).test_connection()["status"] == "ok"

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_test_connection_error(self, mock_smtp_class):
        mock_smtp_class.side_effect = OSError("unreachable")
        assert EmailSender(CONFIGURED).test_connection()["status"] == "error"

    def test_default_config_values(self):
        sender = EmailSender({})
        assert sender.smtp_port == 587
        assert sender.use_tls is True
        assert sender.from_name == "opswatch"


class TestEmailTransport:
    @patch("notifications.email_sender.smtplib.SMTP")
    def test_batch_sends_one_digest(self, mock_smtp_class):
        mock_server = _mock_smtp(mock_smtp_class)
        EmailTransport(CONFIGURED).send_batch([MESSAGE, MESSAGE, MESSAGE])
        assert mock_server.send_message.call_count == 1

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_failed_send_raises(self, mock_smtp_class):
        mock_server = _mock_smtp(mock_smtp_class)
        mock_server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        with pytest.raises(TransportError):
            EmailTransport(CONFIGURED).send(MESSAGE)
