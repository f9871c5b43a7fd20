"""Fan-out of alerts to notification channels according to their filters."""
import copy
import logging
import threading

from models.alerts import Alert, AlertSource
from models.enums import AlertKind, DeliveryFrequency, Severity
from notifications.transports import TransportError, build_transport
from utils.clock import utc_now

logger = logging.getLogger("opswatch.notifications.router")


def to_message(alert):
    return {
        "severity": alert.severity.value,
        "title": alert.title,
        "description": alert.description,
    }


class NotificationRouter:
    """Routes alerts to enabled channels.

    The first filter of a channel that matches an alert decides how it is
    delivered: immediately, in the next batched flush, or in the next digest.
    A failing transport is logged and never blocks the other channels.
    """

    def __init__(self, clock=utc_now, time_of_day=None):
        self.clock = clock
        self.time_of_day = time_of_day or (lambda: self.clock().astimezone().time())
        self._channels = {}
        self._transports = {}
        self._buffers = {DeliveryFrequency.BATCHED: {}, DeliveryFrequency.DIGEST: {}}
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, channel_defs, clock=utc_now):
        from models.notifications import NotificationChannel
        router = cls(clock=clock)
        for d in channel_defs:
            try:
                router.add_channel(NotificationChannel.from_dict(d))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid channel {d.get('id')}: {e}")
        return router

    def add_channel(self, channel, transport=None):
        """Register a channel; the transport is built from its configuration unless given."""
        if transport is None and channel.enabled:
            try:
                transport = build_transport(channel)
            except TransportError as e:
                logger.warning(f"Channel {channel.id} disabled: {e}")
                channel = copy.deepcopy(channel)
                channel.enabled = False
        with self._lock:
            self._channels[channel.id] = copy.deepcopy(channel)
            if transport is not None:
                self._transports[channel.id] = transport

    def set_enabled(self, channel_id, enabled):
        with self._lock:
            channel = self._channels.get(channel_id)
            if channel is None or (enabled and channel_id not in self._transports):
                return False
            channel.enabled = bool(enabled)
            return True

    def channels(self):
        with self._lock:
            return [copy.deepcopy(c) for c in self._channels.values()]

    def enabled_count(self):
        with self._lock:
            return sum(1 for c in self._channels.values() if c.enabled)

    def dispatch(self, alert):
        """Route one alert; returns the ids of channels that received it immediately."""
        moment = self.time_of_day()
        message = to_message(alert)
        delivered = []
        with self._lock:
            targets = []
            for channel in self._channels.values():
                if not channel.enabled:
                    continue
                matched = channel.match(alert, moment)
                if matched is None:
                    continue
                if matched.frequency == DeliveryFrequency.IMMEDIATE:
                    targets.append(channel)
                else:
                    self._buffers[matched.frequency].setdefault(channel.id, []).append(message)

        for channel in targets:
            if self._deliver(channel, [message]):
                delivered.append(channel.id)
        return delivered

    def announce(self, severity, title, description="", source="automation", kind=AlertKind.SYSTEM):
        """Route a message that is not backed by a stored alert; returns the immediate delivery count."""
        alert = Alert(
            severity=Severity(severity),
            kind=AlertKind(kind),
            title=title,
            description=description,
            source=AlertSource(component=source, entity_type="system", entity_id=source),
        )
        return len(self.dispatch(alert))

    def flush(self, frequency=DeliveryFrequency.BATCHED):
        """Deliver everything buffered for a frequency; returns the number of messages sent."""
        frequency = DeliveryFrequency(frequency)
        with self._lock:
            buffered = self._buffers.get(frequency)
            if not buffered:
                return 0
            self._buffers[frequency] = {}
            pending = [(self._channels[cid], msgs) for cid, msgs in buffered.items() if cid in self._channels]

        sent = 0
        for channel, messages in pending:
            if self._deliver(channel, messages):
                sent += len(messages)
        return sent

    def buffered(self, frequency=DeliveryFrequency.BATCHED):
        with self._lock:
            return sum(len(m) for m in self._buffers[DeliveryFrequency(frequency)].values())

    def _deliver(self, channel, messages):
        transport = self._transports.get(channel.id)
        if transport is None:
            return False
        try:
            if len(messages) == 1:
                transport.send(messages[0])
            else:
                transport.send_batch(messages)
            return True
        except Exception as e:
            logger.warning(f"Notification to {channel.name} failed: {e}")
            return False
