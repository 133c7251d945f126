"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class ServiceMetrics:
    """
    Centralized metrics for the Image Host API.

    Minimum viable metrics covering:
    - HTTP requests (rate, duration, errors)
    - Authentication outcomes and session operations
    - Rate-limit decisions per action
    - Resource operations and expiry sweeps
    - Key-value store operations
    - Notification delivery
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "imghost_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
                "store_backend": settings.store_backend,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "imghost_http_requests_total",
            "Total HTTP requests",
            ["endpoint", "method", "status_code"],
        )

        self.http_request_duration_seconds = Histogram(
            "imghost_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["endpoint", "method"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "imghost_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            ["method"],
        )

        # ====================================================================
        # Auth Metrics
        # ====================================================================
        self.auth_attempts_total = Counter(
            "imghost_auth_attempts_total",
            "Signup and login attempts by outcome",
            ["operation", "outcome"],
        )

        self.session_operations_total = Counter(
            "imghost_session_operations_total",
            "Session issue/resolve/revoke operations by outcome",
            ["operation", "outcome"],
        )

        # ====================================================================
        # Rate Limit Metrics
        # ====================================================================
        self.rate_limit_decisions_total = Counter(
            "imghost_rate_limit_decisions_total",
            "Rate-limit decisions per action",
            ["action", "allowed"],
        )

        self.not_found_escalations_total = Counter(
            "imghost_not_found_escalations_total",
            "Client addresses that crossed the not-found probe threshold",
        )

        # ====================================================================
        # Resource Metrics
        # ====================================================================
        self.resource_operations_total = Counter(
            "imghost_resource_operations_total",
            "Resource operations by outcome",
            ["operation", "outcome"],
        )

        self.upload_size_bytes = Histogram(
            "imghost_upload_size_bytes",
            "Accepted upload sizes in bytes",
            buckets=(1024, 10240, 102400, 524288, 1048576, 5242880, 10485760),
        )

        self.sweep_runs_total = Counter(
            "imghost_sweep_runs_total",
            "Expiry sweep runs",
            ["success"],
        )

        self.sweep_entries_total = Counter(
            "imghost_sweep_entries_total",
            "Expiry index entries handled by sweeps",
            ["outcome"],
        )

        self.sweep_duration_seconds = Histogram(
            "imghost_sweep_duration_seconds",
            "Expiry sweep duration in seconds",
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0),
        )

        # ====================================================================
        # Store Metrics
        # ====================================================================
        self.store_operations_total = Counter(
            "imghost_store_operations_total",
            "Total key-value store operations",
            ["operation", "success"],
        )

        self.store_operation_duration_seconds = Histogram(
            "imghost_store_operation_duration_seconds",
            "Key-value store operation duration in seconds",
            ["operation"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        # ====================================================================
        # Notification Metrics
        # ====================================================================
        self.notifications_total = Counter(
            "imghost_notifications_total",
            "Notification deliveries by outcome",
            ["outcome"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "imghost_errors_total",
            "Total errors by type",
            ["error_type", "operation"],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_auth_attempt(self, operation: str, outcome: str) -> None:
        """Record a signup/login outcome."""
        self.auth_attempts_total.labels(operation=operation, outcome=outcome).inc()

    def record_session_operation(self, operation: str, outcome: str) -> None:
        """Record a session lifecycle operation."""
        self.session_operations_total.labels(operation=operation, outcome=outcome).inc()

    def record_rate_limit(self, action: str, allowed: bool) -> None:
        """Record a rate-limit decision."""
        self.rate_limit_decisions_total.labels(action=action, allowed=str(allowed)).inc()

    def record_resource_operation(self, operation: str, outcome: str) -> None:
        """Record a resource operation outcome."""
        self.resource_operations_total.labels(operation=operation, outcome=outcome).inc()

    def record_sweep(
        self,
        success: bool,
        duration: float,
        purged: int = 0,
        orphans_removed: int = 0,
        failed: int = 0,
    ) -> None:
        """Record one sweep run and its per-entry outcomes."""
        self.sweep_runs_total.labels(success=str(success)).inc()
        self.sweep_duration_seconds.observe(duration)
        if purged:
            self.sweep_entries_total.labels(outcome="purged").inc(purged)
        if orphans_removed:
            self.sweep_entries_total.labels(outcome="orphan_removed").inc(orphans_removed)
        if failed:
            self.sweep_entries_total.labels(outcome="failed").inc(failed)

    def record_store_operation(self, operation: str, success: bool, duration: float) -> None:
        """Record key-value store operation metrics."""
        self.store_operations_total.labels(operation=operation, success=str(success)).inc()
        self.store_operation_duration_seconds.labels(operation=operation).observe(duration)

    def record_notification(self, outcome: str) -> None:
        """Record a notification delivery outcome."""
        self.notifications_total.labels(outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ServiceMetrics()
