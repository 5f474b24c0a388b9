"""OpenTelemetry metrics instruments for calendar sync.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Instruments
-----------
  teamcal.sync.reconcile_total        Counter (labels: operation, outcome)
      Per-user reconciliation outcomes.

  teamcal.sync.fanout_users           Histogram (label: operation)
      Number of users addressed by one orchestrator invocation.

  teamcal.tokens.refresh_total        Counter (label: result=ok|failed)
      Access-token refresh attempts.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "teamcal"


def init_metrics(service_name: str = "teamcal") -> metrics.Meter:
    """Initialize OpenTelemetry metrics for the process.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter.  Otherwise, the global no-op
    MeterProvider is used and all recordings are silent.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint), export_interval_millis=15_000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider (no-op before init)."""
    return metrics.get_meter(_METER_NAME)


class SyncMetrics:
    """Lazily-created sync instruments.

    Safe to construct before ``init_metrics`` is called; all recordings are
    no-ops until a real provider is installed.
    """

    def __init__(self) -> None:
        self.__reconcile_total: metrics.Counter | None = None
        self.__fanout_users: metrics.Histogram | None = None
        self.__refresh_total: metrics.Counter | None = None

    @property
    def _reconcile_total(self) -> metrics.Counter:
        if self.__reconcile_total is None:
            self.__reconcile_total = get_meter().create_counter(
                name="teamcal.sync.reconcile_total",
                description="Per-user calendar reconciliation outcomes",
                unit="reconciliations",
            )
        return self.__reconcile_total

    @property
    def _fanout_users(self) -> metrics.Histogram:
        if self.__fanout_users is None:
            self.__fanout_users = get_meter().create_histogram(
                name="teamcal.sync.fanout_users",
                description="Users addressed by one sync invocation",
                unit="users",
            )
        return self.__fanout_users

    @property
    def _refresh_total(self) -> metrics.Counter:
        if self.__refresh_total is None:
            self.__refresh_total = get_meter().create_counter(
                name="teamcal.tokens.refresh_total",
                description="Google access-token refresh attempts",
                unit="refreshes",
            )
        return self.__refresh_total

    def record_outcome(self, operation: str, outcome: str) -> None:
        self._reconcile_total.add(1, {"operation": operation, "outcome": outcome})

    def record_fanout(self, operation: str, users: int) -> None:
        self._fanout_users.record(users, {"operation": operation})

    def record_refresh(self, ok: bool) -> None:
        self._refresh_total.add(1, {"result": "ok" if ok else "failed"})


sync_metrics = SyncMetrics()
