"""Tests for cca_workflows.utils.metrics module."""

import json
import logging
import threading

from cca_workflows.utils.metrics import MetricsCollector, MetricsConfig

from conftest import make_sample


class TestMetricsConfig:
    """Tests for MetricsConfig dataclass."""

    def test_default_values(self):
        """Should have sensible defaults."""
        cfg = MetricsConfig()
        assert cfg.slow_operation_seconds == 5.0
        assert cfg.export_dir == ""


class TestPrimitives:
    """Tests for counters, histograms and gauges."""

    def test_counter(self):
        """Should track counters correctly."""
        metrics = MetricsCollector()
        metrics.inc_counter("requests")
        metrics.inc_counter("requests", 3)
        assert metrics.get_counter("requests") == 4

    def test_labelled_counter(self):
        """Labels should produce separate series."""
        metrics = MetricsCollector()
        metrics.inc_counter("ops", labels={"kind": "hit"})
        metrics.inc_counter("ops", labels={"kind": "miss"})
        metrics.inc_counter("ops", labels={"kind": "hit"})
        assert metrics.get_counter("ops", labels={"kind": "hit"}) == 2
        assert metrics.get_counter("ops") == 0

    def test_histogram_stats(self):
        """Should summarize observations."""
        metrics = MetricsCollector()
        for value in (1.0, 2.0, 3.0):
            metrics.observe_histogram("latency", value)
        stats = metrics.get_histogram_stats("latency")
        assert stats["count"] == 3
        assert stats["avg"] == 2.0
        assert stats["max"] == 3.0

    def test_gauge(self):
        """Gauges should hold the last value."""
        metrics = MetricsCollector()
        metrics.set_gauge("jobs", 2)
        metrics.set_gauge("jobs", 5)
        assert metrics.get_gauge("jobs") == 5

    def test_thread_safety(self):
        """Concurrent increments should not be lost."""
        metrics = MetricsCollector()

        def work():
            for _ in range(1000):
                metrics.record_api_call()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert metrics.api_summary()["api_calls_total"] == 8000

    def test_reset(self):
        """reset() should clear everything."""
        metrics = MetricsCollector()
        metrics.inc_counter("x")
        metrics.reset()
        assert metrics.get_all()["counters"] == {}


class TestSummary:
    """Tests for derived summaries."""

    def test_empty_rates(self):
        """No operations means 100% success and 0% hit rates."""
        summary = MetricsCollector().summary()
        assert summary["operations"]["success_rate_percent"] == 100
        assert summary["cache"]["hit_rate_percent"] == 0
        assert summary["api"]["cache_hit_rate_percent"] == 0
        assert summary["resources"]["available"] is False

    def test_operation_rates(self):
        """Success rate should be an integer percentage."""
        metrics = MetricsCollector()
        metrics.record_operation("a", 0.1, True)
        metrics.record_operation("a", 0.1, True)
        metrics.record_operation("a", 0.1, False)
        ops = metrics.summary()["operations"]
        assert ops["total"] == 3
        assert ops["successful"] == 2
        assert ops["success_rate_percent"] == 66

    def test_cache_hit_rate(self):
        """Cache hit rate should come from hit/miss operations."""
        metrics = MetricsCollector()
        metrics.record_cache_operation("hit", "api")
        metrics.record_cache_operation("miss", "api")
        metrics.record_cache_operation("hit", "validation")
        metrics.record_cache_operation("hit", "validation")
        cache = metrics.summary()["cache"]
        assert cache["operations"] == 4
        assert cache["hit_rate_percent"] == 75

    def test_api_summary_and_reset(self):
        """reset_api() should only clear API counters."""
        metrics = MetricsCollector()
        metrics.record_api_call()
        metrics.record_api_call()
        metrics.record_cache_hit()
        metrics.record_rate_limit_warning()
        metrics.record_operation("x", 0.1, True)
        assert metrics.api_summary() == {
            "api_calls_total": 2,
            "cache_hits": 1,
            "cache_hit_rate_percent": 50,
            "rate_limit_warnings": 1,
        }
        metrics.reset_api()
        assert metrics.api_summary()["api_calls_total"] == 0
        assert metrics.summary()["operations"]["total"] == 1

    def test_resource_usage(self):
        """Resource samples should feed averages and peaks."""
        metrics = MetricsCollector()
        metrics.record_resource_usage("validate", 4, make_sample(memory=40, cpu=10))
        metrics.record_resource_usage("validate", 2, make_sample(memory=60, cpu=30))
        resources = metrics.summary()["resources"]
        assert resources["available"] is True
        assert resources["average_memory_percent"] == 50.0
        assert resources["peak_cpu_percent"] == 30.0
        assert metrics.get_gauge("parallel_jobs", labels={"operation": "validate"}) == 2

    def test_slow_operation_warns(self, caplog):
        """Operations slower than the threshold should log a warning."""
        metrics = MetricsCollector(MetricsConfig(slow_operation_seconds=1.0))
        with caplog.at_level(logging.WARNING, logger="cca_workflows.utils.metrics"):
            metrics.record_operation("slow_thing", 2.5, True)
        assert "slow_thing" in caplog.text

    def test_timer_records_failure(self):
        """timer() should record a failed operation when the block raises."""
        metrics = MetricsCollector()
        try:
            with metrics.timer("boom"):
                raise RuntimeError("x")
        except RuntimeError:
            pass
        with metrics.timer("fine"):
            pass
        ops = metrics.summary()["operations"]
        assert ops["total"] == 2
        assert ops["successful"] == 1


class TestExport:
    """Tests for report and JSON export."""

    def test_report_text(self):
        """report() should render the key figures."""
        metrics = MetricsCollector()
        metrics.record_api_call()
        metrics.inc_counter("workflows_analyzed", 3)
        report = metrics.report()
        assert "Performance Metrics Report" in report
        assert "API calls: 1" in report
        assert "Workflows analyzed: 3" in report

    def test_export_json_returns_document(self):
        """export_json() without a path should just return JSON."""
        document = json.loads(MetricsCollector().export_json())
        assert set(document) >= {"timestamp", "operations", "cache", "api", "workflows", "resources"}

    def test_export_json_writes_file(self, tmp_path):
        """export_json(path) should create parents and write the file."""
        target = tmp_path / "out" / "metrics.json"
        MetricsCollector().export_json(str(target))
        assert json.loads(target.read_text())["operations"]["total"] == 0

    def test_default_export_path(self, tmp_path):
        """default_export_path() should live under export_dir."""
        assert MetricsCollector().default_export_path() is None
        path = MetricsCollector(MetricsConfig(export_dir=str(tmp_path))).default_export_path()
        assert path.parent == tmp_path
        assert path.name.startswith("performance-metrics-")
