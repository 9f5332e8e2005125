"""Metric sinks: in-memory accumulator and Prometheus exporter."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Union

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server
from pydantic import BaseModel, Field

from keyWatch.logging_config import get_logger

logger = get_logger("metrics")

FieldValue = Union[bool, int, float, str]


class Metric(BaseModel):
    name: str
    fields: Dict[str, FieldValue]
    tags: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime


class MetricSink(Protocol):
    def add_fields(
        self,
        measurement: str,
        fields: Dict[str, Any],
        tags: Dict[str, str],
        timestamp: Optional[datetime] = None,
    ) -> None:
        ...

    def add_error(self, error: Exception) -> None:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Accumulator:
    """Keeps every metric and error in memory."""

    def __init__(self) -> None:
        self.metrics: List[Metric] = []
        self.errors: List[Exception] = []

    def add_fields(self, measurement, fields, tags, timestamp=None) -> None:
        self.metrics.append(
            Metric(name=measurement, fields=fields, tags=tags, timestamp=timestamp or _now())
        )

    def add_error(self, error: Exception) -> None:
        self.errors.append(error)

    def get(self, measurement: str) -> Optional[Metric]:
        """First metric with the given name, if any."""
        for metric in self.metrics:
            if metric.name == measurement:
                return metric
        return None

    def has_measurement(self, measurement: str) -> bool:
        return self.get(measurement) is not None

    def clear(self) -> None:
        self.metrics.clear()
        self.errors.clear()


class PrometheusSink:
    """
    Exposes collected measurements on a prometheus_client registry.

    dnskey observations feed a query time histogram labelled with the key
    description, Atlas probe status events set a per-probe connected gauge,
    and every reported error bumps an error counter by type.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.query_time = Histogram(
            "keywatch_dnskey_query_time_seconds",
            "DNSKEY query time in seconds.",
            ["domain", "server", "keytag", "algorithm", "key_type"],
            registry=self.registry,
        )
        self.probe_connected = Gauge(
            "keywatch_atlas_probe_connected",
            "Last Atlas probe status event, 1 for connect and 0 otherwise.",
            ["probe_id", "prefix", "controller", "type", "asn"],
            registry=self.registry,
        )
        self.errors = Counter(
            "keywatch_collection_errors",
            "Errors reported by collection passes and the Atlas stream.",
            ["error_type"],
            registry=self.registry,
        )
        self._handlers = {
            "dnskey": self._observe_dnskey,
            "atlas_probestatus": self._observe_probe_status,
        }

    def add_fields(self, measurement, fields, tags, timestamp=None) -> None:
        handler = self._handlers.get(measurement)
        if handler is None:
            logger.warning(
                f"No exporter for measurement {measurement}",
                extra={"outcome": "dropped"},
            )
            return
        handler(fields, tags)

    def add_error(self, error: Exception) -> None:
        self.errors.labels(error_type=type(error).__name__).inc()
        logger.error(
            f"Collection error: {error}",
            extra={"outcome": "error", "error_type": type(error).__name__},
        )

    def _observe_dnskey(self, fields: Dict[str, Any], tags: Dict[str, str]) -> None:
        self.query_time.labels(**tags).observe(fields["query_time_ms"] / 1000)

    def _observe_probe_status(self, fields: Dict[str, Any], tags: Dict[str, str]) -> None:
        self.probe_connected.labels(**tags).set(1 if fields["status"] == "connect" else 0)

    def serve(self, address: str, port: int):
        """Start the HTTP exposition endpoint; returns the server so it can be shut down."""
        server, _thread = start_http_server(port, addr=address, registry=self.registry)
        logger.info(
            "Prometheus endpoint listening",
            extra={"state": "listening", "server": f"{address}:{port}"},
        )
        return server
