"""Clock helpers. Components take a ``clock`` callable so tests can pin time."""
from datetime import datetime, timezone


def utc_now():
    return datetime.now(timezone.utc)
