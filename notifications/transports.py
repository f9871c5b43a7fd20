"""Notification transports. Each receives ``{severity, title, description}`` messages."""
import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

import requests

from models.enums import TransportKind
from notifications.email_sender import EmailSender
from utils.clock import utc_now

logger = logging.getLogger("opswatch.notifications.transports")


class TransportError(Exception):
    """A transport could not deliver a message."""


@runtime_checkable
class Transport(Protocol):
    def send(self, message: dict) -> None: ...

    def send_batch(self, messages: list) -> None: ...


class _BatchBySending:
    def send_batch(self, messages):
        for message in messages:
            self.send(message)


class ConsoleTransport(_BatchBySending):
    """Print alerts to terminal with rich formatting."""

    SEVERITY_STYLES = {
        "emergency": "bold white on red",
        "critical": "bold red",
        "warning": "bold yellow",
        "info": "bold blue",
    }

    def __init__(self, console=None):
        from rich.console import Console
        self.console = console or Console()

    def send(self, message):
        severity = message.get("severity", "info")
        style = self.SEVERITY_STYLES.get(severity, "")
        self.console.print(
            f"[{style}][{severity.upper()}][/] {message.get('title', '')}: {message.get('description', '')}",
            highlight=False,
        )


class FileTransport(_BatchBySending):
    """Append alerts to a JSON lines log file."""

    def __init__(self, log_path="data/alerts.jsonl"):
        self.log_path = Path(log_path)

    def send(self, message):
        entry = {"timestamp": utc_now().isoformat(), **message}
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            raise TransportError(f"cannot write {self.log_path}: {e}") from e


class EmailTransport:
    """Mail each alert individually; batches go out as one digest mail."""

    def __init__(self, configuration):
        self.sender = EmailSender(configuration)

    def send(self, message):
        if not self.sender.send_alert(message):
            raise TransportError("email delivery failed")

    def send_batch(self, messages):
        if not self.sender.send_digest(messages):
            raise TransportError("email digest delivery failed")


class WebhookTransport(_BatchBySending):
    """POST the message as JSON to a configured URL."""

    def __init__(self, url, timeout=10, headers=None):
        if not url:
            raise TransportError("webhook url is not configured")
        self.url = url
        self.timeout = timeout
        self.headers = dict(headers or {})

    def _post(self, payload):
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout, headers=self.headers)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise TransportError(f"POST to {self.url} failed: {e}") from e

    def send(self, message):
        self._post(message)


class SlackTransport(WebhookTransport):
    """Slack incoming-webhook transport; routes to a channel per severity."""

    SEVERITY_EMOJI = {
        "emergency": ":rotating_light:",
        "critical": ":red_circle:",
        "warning": ":warning:",
        "info": ":information_source:",
    }

    def __init__(self, webhook_url, channels=None, timeout=10):
        super().__init__(webhook_url, timeout=timeout)
        self.channels = dict(channels or {})

    def _payload(self, message):
        severity = message.get("severity", "info")
        payload = {
            "text": f"{self.SEVERITY_EMOJI.get(severity, '')} *{message.get('title', '')}*\n"
                    f"{message.get('description', '')}".strip(),
        }
        channel = self.channels.get(severity)
        if channel is None and severity == "emergency":
            channel = self.channels.get("critical")
        if channel:
            payload["channel"] = channel
        return payload

    def send(self, message):
        self._post(self._payload(message))


def build_transport(channel):
    """Construct the transport for a NotificationChannel."""
    cfg = channel.configuration
    if channel.transport == TransportKind.CONSOLE:
        return ConsoleTransport()
    if channel.transport == TransportKind.FILE:
        return FileTransport(cfg.get("log_path", "data/alerts.jsonl"))
    if channel.transport == TransportKind.EMAIL:
        return EmailTransport(cfg)
    if channel.transport == TransportKind.SLACK:
        return SlackTransport(cfg.get("webhook_url"), channels=cfg.get("channels"), timeout=cfg.get("timeout", 10))
    if channel.transport == TransportKind.WEBHOOK:
        return WebhookTransport(cfg.get("url") or cfg.get("webhook_url"), timeout=cfg.get("timeout", 10),
                                headers=cfg.get("headers"))
    raise TransportError(f"unsupported transport {channel.transport}")
