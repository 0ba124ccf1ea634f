import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .interfaces import MetricsRecorder

logger = logging.getLogger(__name__)

DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)
PDF_SIZE_BUCKETS = (1000, 10000, 100000, 1000000, 10000000)


class PrometheusMetrics(MetricsRecorder):
    """Metrics recorder backed by prometheus_client.

    Each instance owns its own registry so that several services (or tests)
    can live in one process without colliding on metric names. ``render()``
    produces the text exposition served at ``/metrics``.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._errors = Counter(
            "pdf_converter_errors_total",
            "Total number of errors by type",
            ["error_type", "error_message"],
            registry=self.registry,
        )
        self._active = Gauge(
            "pdf_converter_active_requests",
            "Number of requests currently being processed",
            registry=self.registry,
        )
        self._duration = Histogram(
            "pdf_converter_request_duration_seconds",
            "Time taken to process requests",
            ["path"],
            buckets=DURATION_BUCKETS,
            registry=self.registry,
        )
        self._requests = Counter(
            "pdf_converter_requests_total",
            "Total number of requests processed",
            ["path", "status_code"],
            registry=self.registry,
        )
        self._pdf_size = Histogram(
            "pdf_converter_pdf_size_bytes",
            "Size of generated PDFs in bytes",
            buckets=PDF_SIZE_BUCKETS,
            registry=self.registry,
        )

    def record_error(self, kind: str, message: str) -> None:
        logger.debug("error recorded kind=%s message=%s", kind, message)
        self._errors.labels(kind, message).inc()

    def increase_active_requests(self) -> None:
        self._active.inc()

    def decrease_active_requests(self) -> None:
        self._active.dec()

    def observe_request_duration(self, path: str, seconds: float) -> None:
        self._duration.labels(path).observe(seconds)

    def increase_request_total(self, path: str, status_code: int) -> None:
        self._requests.labels(path, str(status_code)).inc()

    def observe_pdf_size(self, size: int) -> None:
        self._pdf_size.observe(size)

    def error_count(self, kind: str) -> float:
        """Errors recorded for ``kind`` across every message."""
        total = 0.0
        for metric in self._errors.collect():
            for sample in metric.samples:
                if sample.name.endswith("_total") and sample.labels.get("error_type") == kind:
                    total += sample.value
        return total

    def render(self) -> bytes:
        return generate_latest(self.registry)
