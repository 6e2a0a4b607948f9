"""
Prometheus metrics for the CallBridge service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry


class Metrics:
    """
    Centralized metrics for the CallBridge service.
    """

    def __init__(self, service_name: str = "callbridge", version: str = "0.1.0", registry=None):
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

        # Call tracking
        self.calls_total = Counter(
            "callbridge_calls_total",
            "Tracked calls by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.calls_active = Gauge(
            "callbridge_calls_active",
            "Calls currently being tracked",
            registry=self.registry,
        )

        self.call_duration = Histogram(
            "callbridge_call_duration_seconds",
            "Time from originate to hangup",
            ["answered"],
            buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600),
            registry=self.registry,
        )

        self.bus_events_total = Counter(
            "callbridge_bus_events_total",
            "Events delivered by the bus adapter",
            ["event_type"],
            registry=self.registry,
        )

    def call_started(self):
        self.calls_active.inc()

    def call_finished(self, outcome: str, duration_seconds: float | None = None, answered: bool = False):
        """Record the end of a tracked call; `outcome` is "answered", "unanswered" or an error name."""
        self.calls_active.dec()
        self.calls_total.labels(outcome=outcome).inc()
        if duration_seconds is not None:
            self.call_duration.labels(answered=str(answered).lower()).observe(duration_seconds)

    def record_bus_event(self, event):
        self.bus_events_total.labels(event_type=event.type).inc()
