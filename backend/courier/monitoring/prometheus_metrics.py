"""
Prometheus metrics module for the courier messaging service.

Service operation metrics are fed by the @measure_operation decorator;
realtime metrics (live connections, online users, emitted and inbound
events) are fed by the connection registry and the fanout router.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "courier_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "courier_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "courier_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

ws_connections = Gauge(
    "courier_ws_connections",
    "Number of live registered websocket connections",
    registry=REGISTRY,
)

online_users = Gauge(
    "courier_online_users",
    "Number of users with at least one live connection",
    registry=REGISTRY,
)

events_emitted_total = Counter(
    "courier_events_emitted_total",
    "Outbound realtime events written to connections",
    ["event_type"],
    registry=REGISTRY,
)

inbound_events_total = Counter(
    "courier_inbound_events_total",
    "Inbound realtime events by outcome",
    ["event_type", "outcome"],  # outcome: ok | error | rejected
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'MessageService')
            operation: Operation/method name (e.g., 'create_message')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def set_connection_counts(connections: int, users: int) -> None:
        ws_connections.set(connections)
        online_users.set(users)

    @staticmethod
    def record_event_emitted(event_type: str) -> None:
        events_emitted_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_inbound_event(event_type: str, outcome: str) -> None:
        inbound_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


# Global instance for easy access
prometheus_metrics = PrometheusMetrics()
