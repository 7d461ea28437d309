"""Metrics collection for the knowledge store.

Thin convenience wrapper around ``prometheus_client`` so every component
records vector operations with the same label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- Each collector owns its registry, so independent store instances (and
  tests) never collide on metric names
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class MetricsCollector:
    """Metrics for vector store operations.

    Parameters
    - service_name: Logical name, kept for diagnostics
    - registry: Optional custom ``CollectorRegistry``
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.vector_store_operations = Counter(
            'clarity_vector_store_operations_total',
            'Total vector store operations',
            ['operation', 'provider', 'status'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'clarity_vector_search_duration_seconds',
            'Vector search duration',
            ['provider'],
            registry=self.registry
        )

        self.provider_fallbacks = Counter(
            'clarity_vector_provider_fallbacks_total',
            'Startups that fell back from the requested provider',
            ['requested', 'selected'],
            registry=self.registry
        )

        self.usage_records = Counter(
            'clarity_usage_records_total',
            'Usage records by dispatch outcome',
            ['outcome'],
            registry=self.registry
        )

    def record_vector_store_operation(
        self,
        operation: str,
        provider: str,
        status: str = "success"
    ) -> None:
        """Record one vector store operation."""
        self.vector_store_operations.labels(
            operation=operation, provider=provider, status=status
        ).inc()

    def record_search(self, provider: str, duration: float) -> None:
        """Record search latency in seconds."""
        self.search_duration.labels(provider=provider).observe(duration)

    def record_provider_fallback(self, requested: str, selected: str) -> None:
        """Record a startup fallback."""
        self.provider_fallbacks.labels(requested=requested, selected=selected).inc()

    def record_usage(self, outcome: str) -> None:
        """Record a usage dispatch outcome (``recorded``, ``failed``, ``dropped``)."""
        self.usage_records.labels(outcome=outcome).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')
