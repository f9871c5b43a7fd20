"""Notification routing and transports."""
from notifications.router import NotificationRouter
from notifications.transports import (
    ConsoleTransport, FileTransport, EmailTransport, SlackTransport, WebhookTransport,
    TransportError, build_transport,
)
from notifications.email_sender import EmailSender
