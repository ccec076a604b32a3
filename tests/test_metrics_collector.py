"""
Tests for the in-process metrics collector.
"""
import json

import pytest

from cms_cache.metrics_collector import MetricsCollector, MetricType, MetricUnit


class TestMetricsCollector:
    """Test metric recording and export."""

    def test_counter(self):
        collector = MetricsCollector()
        counter = collector.get_counter('cache_hits_total', 'Cache hits')

        counter.increment(tier='standard')
        counter.increment(2, tier='standard')

        assert counter.get_value(tier='standard') == 3
        assert counter.get_value(tier='critical') == 0
        assert collector.get_counter('cache_hits_total') is counter

    def test_gauge(self):
        collector = MetricsCollector()
        gauge = collector.get_gauge('cache_keys', 'Keys per tier')

        gauge.set(10, tier='standard')
        gauge.set(4, tier='standard')

        assert gauge.get_value() == 4

    def test_histogram(self):
        collector = MetricsCollector()
        histogram = collector.get_histogram('cache_get_duration_ms')

        for value in (0.2, 0.4, 3.0):
            histogram.observe(value)

        stats = histogram.get_statistics()
        assert stats['count'] == 3
        assert stats['sum'] == pytest.approx(3.6)
        assert stats['buckets'][0.5] == 2

    def test_prometheus_export(self):
        """Test Prometheus format export."""
        collector = MetricsCollector()

        collector.record_metric('test_counter', 10, MetricType.COUNTER, MetricUnit.COUNT)
        collector.record_metric('test_gauge', 75.5, MetricType.GAUGE, MetricUnit.PERCENT)

        prometheus_output = collector.export_metrics('prometheus')

        assert '# TYPE test_counter counter' in prometheus_output
        assert 'test_counter 10' in prometheus_output
        assert '# TYPE test_gauge gauge' in prometheus_output
        assert 'test_gauge 75.5' in prometheus_output

    def test_labelled_prometheus_export(self):
        collector = MetricsCollector()
        collector.get_counter('cache_sets_total').increment(tier='critical')

        assert 'cache_sets_total{tier="critical"} 1' in collector.export_metrics('prometheus')

    def test_json_export(self):
        """Test JSON format export."""
        collector = MetricsCollector()
        collector.record_metric('test_metric', 42, MetricType.GAUGE, MetricUnit.COUNT)

        parsed = json.loads(collector.export_metrics('json'))

        assert parsed['total_metrics'] == 1
        assert 'metrics' in parsed

    def test_process_memory(self):
        memory = MetricsCollector().record_process_memory()
        assert memory['rss'] > 0
        assert memory['vms'] > 0

    def test_reset(self):
        collector = MetricsCollector()
        collector.get_counter('c').increment()
        collector.reset()

        assert collector.get_metrics_summary()['total_metrics'] == 0
        assert collector.get_counter('c').get_value() == 0

    def test_counter_tracks_each_label_set(self):
        collector = MetricsCollector()
        hits = collector.get_counter('cache_hits_total', 'Cache hits')

        for _ in range(5):
            hits.increment(tier='standard')
        hits.increment(tier='critical')

        assert hits.get_value(tier='standard') == 5
        assert hits.get_value(tier='critical') == 1
        assert hits.get_total() == 6

        output = collector.export_metrics('prometheus')
        assert 'cache_hits_total{tier="standard"} 5' in output
        assert 'cache_hits_total{tier="critical"} 1' in output
        assert output.count('# TYPE cache_hits_total counter') == 1

    def test_reset_zeroes_gauges_and_histograms(self):
        collector = MetricsCollector()
        histogram = collector.get_histogram('cache_get_duration_ms')
        gauge = collector.get_gauge('cache_keys')
        histogram.observe(3.0)
        gauge.set(7)

        collector.reset()

        stats = histogram.get_statistics()
        assert stats['count'] == 0
        assert stats['sum'] == 0
        assert all(count == 0 for count in stats['buckets'].values())
        assert gauge.get_value() == 0
