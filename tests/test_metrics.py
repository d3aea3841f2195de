"""
Tests for execution/contract_rag/metrics.py

Covers: SystemMetrics (aggregation properties), MetricsCollector singleton,
        QueryTracker context manager, ingestion recording and the
        get_metrics_collector factory.
"""

import pytest


# ---------------------------------------------------------------------------
# SystemMetrics aggregation properties
# ---------------------------------------------------------------------------

class TestSystemMetrics:
    """Tests for SystemMetrics computed properties."""

    def test_avg_latency_zero_queries(self):
        from execution.contract_rag.metrics import SystemMetrics
        assert SystemMetrics().avg_latency_ms == 0

    def test_avg_latency_with_queries(self):
        from execution.contract_rag.metrics import SystemMetrics
        m = SystemMetrics(total_queries=4, total_latency_ms=400.0)
        assert m.avg_latency_ms == 100.0

    def test_p95_latency(self):
        from execution.contract_rag.metrics import SystemMetrics
        m = SystemMetrics(latencies=list(range(1, 101)))
        assert m.p95_latency_ms >= 95
        assert SystemMetrics().p95_latency_ms == 0

    def test_rates(self):
        from execution.contract_rag.metrics import SystemMetrics
        m = SystemMetrics(total_queries=10, failed_queries=2, fallback_queries=1)
        assert m.error_rate == pytest.approx(0.2)
        assert m.fallback_rate == pytest.approx(0.1)
        assert SystemMetrics().error_rate == 0

    def test_to_dict_sections(self):
        from execution.contract_rag.metrics import SystemMetrics
        data = SystemMetrics().to_dict()
        assert set(data) == {"queries", "latency_ms", "prompts", "ingestion", "errors"}
        assert data["latency_ms"]["min"] == 0
        assert data["queries"]["error_rate"] == "0.00%"


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------

class TestMetricsCollector:

    def test_singleton(self):
        from execution.contract_rag.metrics import MetricsCollector
        assert MetricsCollector() is MetricsCollector()

    def test_factory_returns_singleton(self):
        from execution.contract_rag.metrics import get_metrics_collector, MetricsCollector
        assert get_metrics_collector() is MetricsCollector()

    def test_track_successful_query(self):
        from execution.contract_rag.metrics import get_metrics_collector
        collector = get_metrics_collector()
        with collector.track_query("What is the fee?") as tracker:
            tracker.set_results(
                count=2, query_type="payment", prompt_variant="minimal",
                estimated_tokens=400, estimated_cost=0.012,
            )

        m = collector.get_metrics()
        assert m.total_queries == 1
        assert m.successful_queries == 1
        assert m.prompt_variants["minimal"] == 1
        assert m.queries_by_type["payment"] == 1
        assert m.total_estimated_tokens == 400
        assert m.total_estimated_cost == pytest.approx(0.012)
        assert len(m.latencies) == 1

    def test_track_fallback_query(self):
        from execution.contract_rag.metrics import get_metrics_collector
        collector = get_metrics_collector()
        with collector.track_query("q") as tracker:
            tracker.set_results(count=1, fallback_used=True)
        m = collector.get_metrics()
        assert m.fallback_queries == 1
        assert m.failed_queries == 1
        assert m.successful_queries == 0

    def test_empty_query_counted(self):
        from execution.contract_rag.metrics import get_metrics_collector
        collector = get_metrics_collector()
        with collector.track_query("q") as tracker:
            tracker.set_results(count=0)
        assert collector.get_metrics().empty_queries == 1

    def test_exception_recorded_and_propagated(self):
        from execution.contract_rag.metrics import get_metrics_collector
        collector = get_metrics_collector()
        with pytest.raises(RuntimeError):
            with collector.track_query("q"):
                raise RuntimeError("boom")
        m = collector.get_metrics()
        assert m.failed_queries == 1
        assert m.errors_by_type["RuntimeError"] == 1

    def test_query_text_truncated(self):
        from execution.contract_rag.metrics import get_metrics_collector
        collector = get_metrics_collector()
        with collector.track_query("x" * 500) as tracker:
            tracker.set_results(count=1)
        assert len(collector.get_recent_queries(1)[0].query_text) == 200

    def test_ingestion(self):
        from execution.contract_rag.metrics import get_metrics_collector
        collector = get_metrics_collector()
        collector.record_ingestion("doc1", chunks_count=12, duration_ms=300.0)
        collector.record_ingestion_failure("doc2", "ValidationError")
        data = collector.get_metrics_dict()
        assert data["ingestion"] == {"documents": 1, "failed": 1, "chunks": 12, "avg_time_ms": 300.0}
        assert data["errors"] == {"ValidationError": 1}

    def test_reset(self):
        from execution.contract_rag.metrics import get_metrics_collector
        collector = get_metrics_collector()
        collector.record_ingestion("doc1", 3, 10.0)
        collector.reset()
        assert collector.get_metrics().documents_ingested == 0
        assert collector.get_recent_queries() == []

    def test_uptime(self):
        from execution.contract_rag.metrics import get_metrics_collector
        assert get_metrics_collector().get_uptime().total_seconds() >= 0
