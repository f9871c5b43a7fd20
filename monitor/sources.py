"""Metric sources: where the monitoring loop reads fresh metric values from."""
import logging
from typing import Protocol, runtime_checkable

from utils.http_client import HTTPClient

logger = logging.getLogger("opswatch.sources")


class MetricUnavailable(LookupError):
    """The source has no reading for a metric."""


@runtime_checkable
class MetricSource(Protocol):
    def read(self, metric_id: str) -> float: ...


class CallableSource:
    """Reads each metric by calling a zero-argument function."""

    def __init__(self, readers=None):
        self.readers = dict(readers or {})

    def register(self, metric_id, reader):
        self.readers[metric_id] = reader

    def read(self, metric_id):
        reader = self.readers.get(metric_id)
        if reader is None:
            raise MetricUnavailable(metric_id)
        return float(reader())


class HTTPMetricSource:
    """Reads metrics from a JSON service, one endpoint per metric.

    An endpoint may answer with a bare number or an object carrying the
    value under ``value`` (or ``score``).
    """

    def __init__(self, client, endpoints):
        self.client = client
        self.endpoints = dict(endpoints or {})

    @classmethod
    def from_config(cls, sources_cfg):
        client = HTTPClient(sources_cfg["base_url"], timeout=sources_cfg.get("timeout", 10),
                            token=sources_cfg.get("token"))
        return cls(client, sources_cfg.get("endpoints", {}))

    def read(self, metric_id):
        path = self.endpoints.get(metric_id)
        if path is None:
            raise MetricUnavailable(metric_id)
        data = self.client.get(path)
        if isinstance(data, dict):
            data = data.get("value", data.get("score"))
        if data is None:
            raise ValueError(f"no value in response for {metric_id}")
        return float(data)


class ChainedSource:
    """Asks each source in turn; the first one with a reading wins."""

    def __init__(self, *sources):
        self.sources = list(sources)

    def read(self, metric_id):
        for source in self.sources:
            try:
                return source.read(metric_id)
            except MetricUnavailable:
                continue
        raise MetricUnavailable(metric_id)


def build_metric_source(monitor_cfg, extra=None):
    """Source from config: the HTTP service when a base_url is set, plus any extra readers."""
    sources = []
    if extra is not None:
        sources.append(extra)
    sources_cfg = monitor_cfg.get("sources", {})
    if sources_cfg.get("base_url"):
        sources.append(HTTPMetricSource.from_config(sources_cfg))
    return ChainedSource(*sources)
