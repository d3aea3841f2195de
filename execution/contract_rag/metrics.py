"""
Metrics Collection for Contract RAG

Tracks query latency, prompt economy (variant, estimated tokens and cost),
fallback usage and ingestion outcomes.
"""

import time
import logging
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Optional
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class QueryMetrics:
    """Metrics for a single query."""
    query_id: str
    query_text: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    results_count: int = 0
    query_type: str = "general"
    prompt_variant: Optional[str] = None
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    fallback_used: bool = False
    error: Optional[str] = None


@dataclass
class SystemMetrics:
    """Aggregated system metrics."""
    # Query metrics
    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0
    fallback_queries: int = 0
    empty_queries: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    # Prompt economy
    total_estimated_tokens: int = 0
    total_estimated_cost: float = 0.0
    prompt_variants: dict = field(default_factory=lambda: defaultdict(int))
    queries_by_type: dict = field(default_factory=lambda: defaultdict(int))

    # Ingestion metrics
    documents_ingested: int = 0
    documents_failed: int = 0
    chunks_created: int = 0
    total_ingestion_time_ms: float = 0

    # Error tracking
    errors_by_type: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        """Calculate average query latency."""
        if self.total_queries == 0:
            return 0
        return self.total_latency_ms / self.total_queries

    @property
    def p95_latency_ms(self) -> float:
        """Calculate 95th percentile latency."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * 0.95)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def fallback_rate(self) -> float:
        if self.total_queries == 0:
            return 0
        return self.fallback_queries / self.total_queries

    @property
    def error_rate(self) -> float:
        """Calculate error rate."""
        if self.total_queries == 0:
            return 0
        return self.failed_queries / self.total_queries

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "queries": {
                "total": self.total_queries,
                "successful": self.successful_queries,
                "failed": self.failed_queries,
                "fallback": self.fallback_queries,
                "empty": self.empty_queries,
                "error_rate": f"{self.error_rate:.2%}",
                "fallback_rate": f"{self.fallback_rate:.2%}",
                "by_type": dict(self.queries_by_type),
            },
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "min": round(self.min_latency_ms, 2) if self.min_latency_ms != float('inf') else 0,
                "max": round(self.max_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
            },
            "prompts": {
                "variants": dict(self.prompt_variants),
                "estimated_tokens": self.total_estimated_tokens,
                "estimated_cost": round(self.total_estimated_cost, 4),
            },
            "ingestion": {
                "documents": self.documents_ingested,
                "failed": self.documents_failed,
                "chunks": self.chunks_created,
                "avg_time_ms": round(
                    self.total_ingestion_time_ms / max(self.documents_ingested, 1), 2
                ),
            },
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Collects and aggregates system metrics.

    Usage:
        collector = get_metrics_collector()

        with collector.track_query(query_text) as tracker:
            response = await orchestrator.query(query_text)
            tracker.set_results(len(response.sources), prompt_variant="full")

        metrics = collector.get_metrics()
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern for global metrics collection."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.metrics = SystemMetrics()
        self._query_history: list[QueryMetrics] = []
        self._max_history = 1000
        self._start_time = datetime.now()
        self._initialized = True

    def reset(self):
        """Reset all metrics (for testing)."""
        self.metrics = SystemMetrics()
        self._query_history = []
        self._start_time = datetime.now()

    class QueryTracker:
        """Context manager for tracking query metrics."""

        def __init__(self, collector: 'MetricsCollector', query_text: str):
            self.collector = collector
            self.query = QueryMetrics(
                query_id=f"q_{int(time.time() * 1000)}",
                query_text=query_text[:200],
                start_time=time.time(),
            )

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.query.end_time = time.time()
            self.query.latency_ms = (self.query.end_time - self.query.start_time) * 1000

            if exc_type:
                self.query.error = str(exc_val)
                self.collector._record_error(exc_type.__name__)

            self.collector._record_query(self.query)
            return False  # Don't suppress exceptions

        def set_results(
            self,
            count: int,
            query_type: str = "general",
            prompt_variant: Optional[str] = None,
            estimated_tokens: int = 0,
            estimated_cost: float = 0.0,
            fallback_used: bool = False,
            error: Optional[str] = None,
        ):
            """Set query result metadata."""
            self.query.results_count = count
            self.query.query_type = query_type
            self.query.prompt_variant = prompt_variant
            self.query.estimated_tokens = estimated_tokens
            self.query.estimated_cost = estimated_cost
            self.query.fallback_used = fallback_used
            if error:
                self.query.error = error

    def track_query(self, query_text: str) -> QueryTracker:
        """Create a query tracker context manager."""
        return self.QueryTracker(self, query_text)

    def _record_query(self, query: QueryMetrics):
        """Record completed query metrics."""
        self.metrics.total_queries += 1

        if query.fallback_used:
            self.metrics.fallback_queries += 1
            self.metrics.failed_queries += 1
        elif query.error:
            self.metrics.failed_queries += 1
        else:
            self.metrics.successful_queries += 1
        if query.results_count == 0 and not query.error:
            self.metrics.empty_queries += 1

        self.metrics.total_latency_ms += query.latency_ms
        self.metrics.min_latency_ms = min(self.metrics.min_latency_ms, query.latency_ms)
        self.metrics.max_latency_ms = max(self.metrics.max_latency_ms, query.latency_ms)
        self.metrics.latencies.append(query.latency_ms)

        if len(self.metrics.latencies) > self._max_history:
            self.metrics.latencies = self.metrics.latencies[-self._max_history:]

        if query.prompt_variant:
            self.metrics.prompt_variants[query.prompt_variant] += 1
        self.metrics.total_estimated_tokens += query.estimated_tokens
        self.metrics.total_estimated_cost += query.estimated_cost
        self.metrics.queries_by_type[query.query_type] += 1

        self._query_history.append(query)
        if len(self._query_history) > self._max_history:
            self._query_history = self._query_history[-self._max_history:]

    def _record_error(self, error_type: str):
        """Record an error by type."""
        self.metrics.errors_by_type[error_type] += 1

    def record_ingestion(self, document_id: str, chunks_count: int, duration_ms: float):
        """Record a successful document ingestion."""
        self.metrics.documents_ingested += 1
        self.metrics.chunks_created += chunks_count
        self.metrics.total_ingestion_time_ms += duration_ms

    def record_ingestion_failure(self, document_id: str, error_type: str):
        self.metrics.documents_failed += 1
        self._record_error(error_type)

    def get_metrics(self) -> SystemMetrics:
        """Get current metrics."""
        return self.metrics

    def get_metrics_dict(self) -> dict:
        """Get metrics as a dictionary."""
        return self.metrics.to_dict()

    def get_recent_queries(self, limit: int = 10) -> list[QueryMetrics]:
        """Get most recent queries."""
        return self._query_history[-limit:]

    def get_uptime(self) -> timedelta:
        """Get system uptime."""
        return datetime.now() - self._start_time


# Global metrics collector instance
_collector = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
