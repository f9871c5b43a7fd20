"""Alert lifecycle: deduplication, acknowledgement, resolution and expiry."""
from alerts.manager import AlertManager
