"""Utility modules for opswatch."""
from utils.logger import setup_logging
from utils.event_bus import EventBus
from utils.delayed_tasks import DelayedTaskQueue
from utils.http_client import HTTPClient, APIError
from utils.clock import utc_now
