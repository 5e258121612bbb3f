"""
Prometheus metrics for the ragbridge service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os

# Query round trips run from sub-second to the full response timeout
QUERY_LATENCY_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0)


class Metrics:
    """
    Centralized metrics for the ragbridge service.
    """

    def __init__(self, service_name: str = "ragbridge", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            ["service"],
            registry=self.registry,
        )
        self.http_requests_active.labels(service=service_name).set(0)

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Business Metrics - query correlation
        self.queries_published_total = Counter(
            "ragbridge_queries_published_total",
            "Total queries published to the answer worker",
            ["domain"],
            registry=self.registry,
        )

        self.responses_total = Counter(
            "ragbridge_responses_total",
            "Settled queries by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.queries_pending = Gauge(
            "ragbridge_queries_pending",
            "Number of queries awaiting a response",
            registry=self.registry,
        )

        self.rate_limited_total = Counter(
            "ragbridge_rate_limited_total",
            "Requests rejected by the per-caller rate limiter",
            registry=self.registry,
        )

        self.malformed_messages_total = Counter(
            "ragbridge_malformed_messages_total",
            "Inbound messages that could not be decoded",
            registry=self.registry,
        )

        self.query_latency = Histogram(
            "ragbridge_query_latency_seconds",
            "Time from publish to settlement",
            ["outcome"],
            buckets=QUERY_LATENCY_BUCKETS,
            registry=self.registry,
        )

        # System Metrics
        self._setup_process_metrics()

    def _setup_process_metrics(self):
        """Set up process-level metrics using psutil."""
        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

        self.process_open_fds = Gauge(
            "process_open_fds",
            "Number of open file descriptors",
            ["service"],
            registry=self.registry,
        )

        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            process = psutil.Process(os.getpid())
        except psutil.Error:
            return

        memory_info = process.memory_info()
        self.process_memory_bytes.labels(service=self.service_name).set(memory_info.rss)

        # num_fds() is POSIX only
        if hasattr(process, "num_fds"):
            self.process_open_fds.labels(service=self.service_name).set(process.num_fds())

    def record_query_published(self, domain: str):
        self.queries_published_total.labels(domain=domain).inc()

    def record_query_settled(self, outcome: str, duration_seconds: float):
        """Record a settled query: answered, failed, timeout, cancelled, shutdown."""
        self.responses_total.labels(outcome=outcome).inc()
        self.query_latency.labels(outcome=outcome).observe(duration_seconds)

    def set_pending_queries(self, count: int):
        self.queries_pending.set(count)
