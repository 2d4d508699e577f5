"""
Error reporting sink.

Best-effort failures (rollback, dashboard sync, autoscaler ticks, cache
cleanup) are funnelled here instead of being raised. Reporting never fails
the caller.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter

from servelane.core.logging import get_logger

logger = get_logger(__name__)


class ErrorReporter:
    """Logs errors and counts them per reporting context."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize error reporter."""
        self.registry = registry or CollectorRegistry()
        self._error_counter = Counter(
            'servelane_errors_total',
            'Total number of reported operator errors',
            ['context'],
            registry=self.registry
        )

    def report(self, error: BaseException, context: str = "unknown") -> None:
        """Report an error; never raises."""
        try:
            logger.error(
                "Operator error reported",
                context=context,
                error=str(error),
                error_type=type(error).__name__,
            )
            self._error_counter.labels(context=context).inc()
        except Exception:
            pass

    def error_count(self, context: str) -> float:
        """Number of errors reported for a context."""
        value = self.registry.get_sample_value(
            'servelane_errors_total', {'context': context}
        )
        return value or 0.0
