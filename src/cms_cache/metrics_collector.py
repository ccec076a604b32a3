"""
Metrics collection for the CMS cache layer.

Provides counters, gauges and histograms for cache operations, and
exports them as JSON or Prometheus text.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Any, Optional, Union
from dataclasses import dataclass, field
from collections import deque
from enum import Enum
import json
import statistics

import psutil

from .logging_config import get_logger


class MetricType(str, Enum):
    """Types of metrics."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class MetricUnit(str, Enum):
    """Metric units."""
    COUNT = "count"
    BYTES = "bytes"
    MILLISECONDS = "milliseconds"
    PERCENT = "percent"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MetricValue:
    """A single metric value with metadata."""
    name: str
    value: Union[int, float]
    metric_type: MetricType
    unit: MetricUnit
    timestamp: datetime
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class MetricSeries:
    """A bounded time series of metric values."""
    name: str
    metric_type: MetricType
    unit: MetricUnit
    description: str = ""
    values: deque = field(default_factory=lambda: deque(maxlen=1000))
    last_updated: datetime = field(default_factory=_utcnow)

    def add_value(self, value: Union[int, float], **labels):
        """Add a value to the series."""
        timestamp = _utcnow()
        self.values.append(MetricValue(
            name=self.name,
            value=value,
            metric_type=self.metric_type,
            unit=self.unit,
            timestamp=timestamp,
            labels={k: str(v) for k, v in labels.items()},
        ))
        self.last_updated = timestamp

    def get_latest_value(self) -> Optional[MetricValue]:
        """Get the latest value."""
        return self.values[-1] if self.values else None

    def calculate_statistics(self, window_minutes: int = 5) -> Dict[str, float]:
        """Calculate statistics for recent values."""
        cutoff_time = _utcnow() - timedelta(minutes=window_minutes)
        recent_values = [
            value.value for value in self.values
            if value.timestamp >= cutoff_time
        ]

        if not recent_values:
            return {}

        return {
            'count': len(recent_values),
            'sum': sum(recent_values),
            'min': min(recent_values),
            'max': max(recent_values),
            'mean': statistics.mean(recent_values),
            'median': statistics.median(recent_values),
        }


def label_key(labels: Dict[str, Any]) -> str:
    """Stable identity of a label set."""
    return json.dumps(labels, sort_keys=True, default=str)


class Counter:
    """Counter metric that only increases, tracked per label set."""

    def __init__(self, collector: 'MetricsCollector', name: str, description: str = ""):
        self.collector = collector
        self.name = name
        self.description = description
        self._values: Dict[str, Union[int, float]] = {}
        self._lock = threading.Lock()

    def increment(self, amount: Union[int, float] = 1, **labels):
        """Increment the counter for the given labels."""
        key = label_key(labels)
        with self._lock:
            value = self._values.get(key, 0) + amount
            self._values[key] = value

        self.collector.record_metric(self.name, value, MetricType.COUNTER, MetricUnit.COUNT,
                                     description=self.description, **labels)

    def get_value(self, **labels) -> Union[int, float]:
        """Get current value for the given labels."""
        with self._lock:
            return self._values.get(label_key(labels), 0)

    def get_total(self) -> Union[int, float]:
        """Sum over every label set."""
        with self._lock:
            return sum(self._values.values())

    def reset(self):
        """Reset counter to zero."""
        with self._lock:
            self._values.clear()


class Gauge:
    """Gauge metric that can increase or decrease."""

    def __init__(self, collector: 'MetricsCollector', name: str, description: str = "",
                 unit: MetricUnit = MetricUnit.COUNT):
        self.collector = collector
        self.name = name
        self.description = description
        self.unit = unit
        self._value = 0
        self._lock = threading.Lock()

    def set(self, value: Union[int, float], **labels):
        """Set the gauge value."""
        with self._lock:
            self._value = value

        self.collector.record_metric(self.name, value, MetricType.GAUGE, self.unit,
                                     description=self.description, **labels)

    def get_value(self) -> Union[int, float]:
        """Get current value."""
        with self._lock:
            return self._value

    def reset(self):
        """Reset gauge to zero."""
        with self._lock:
            self._value = 0


class Histogram:
    """Histogram metric for tracking distributions."""

    def __init__(self, collector: 'MetricsCollector', name: str, description: str = "",
                 unit: MetricUnit = MetricUnit.MILLISECONDS, buckets: List[float] = None):
        self.collector = collector
        self.name = name
        self.description = description
        self.unit = unit
        self.buckets = buckets or [0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 50.0, float('inf')]
        self._bucket_counts = {bucket: 0 for bucket in self.buckets}
        self._sum = 0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: Union[int, float], **labels):
        """Observe a value."""
        with self._lock:
            self._sum += value
            self._count += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._bucket_counts[bucket] += 1

        self.collector.record_metric(self.name, value, MetricType.HISTOGRAM, self.unit,
                                     description=self.description, **labels)

    def get_statistics(self) -> Dict[str, Any]:
        """Get histogram statistics."""
        with self._lock:
            return {
                'count': self._count,
                'sum': self._sum,
                'mean': self._sum / self._count if self._count > 0 else 0,
                'buckets': self._bucket_counts.copy()
            }

    def reset(self):
        """Forget every observation."""
        with self._lock:
            self._bucket_counts = {bucket: 0 for bucket in self.buckets}
            self._sum = 0
            self._count = 0


class MetricsCollector:
    """Metrics registry owned by one cache manager."""

    def __init__(self):
        self.logger = get_logger(__name__, 'metrics_collector')
        self.metrics: Dict[str, MetricSeries] = {}
        self.counters: Dict[str, Counter] = {}
        self.gauges: Dict[str, Gauge] = {}
        self.histograms: Dict[str, Histogram] = {}
        self._lock = threading.RLock()

        self.stats = {
            'metrics_recorded': 0,
            'start_time': _utcnow(),
            'last_collection_time': None
        }

    def record_metric(
        self,
        name: str,
        value: Union[int, float],
        metric_type: MetricType,
        unit: MetricUnit,
        description: str = "",
        **labels
    ):
        """Record a metric value."""
        series_key = f"{name}:{label_key(labels)}"

        with self._lock:
            series = self.metrics.get(series_key)
            if series is None:
                series = MetricSeries(name=name, metric_type=metric_type, unit=unit, description=description)
                self.metrics[series_key] = series

            series.add_value(value, **labels)
            self.stats['metrics_recorded'] += 1
            self.stats['last_collection_time'] = series.last_updated

    def get_counter(self, name: str, description: str = "") -> Counter:
        """Get or create a counter."""
        with self._lock:
            if name not in self.counters:
                self.counters[name] = Counter(self, name, description)
            return self.counters[name]

    def get_gauge(self, name: str, description: str = "", unit: MetricUnit = MetricUnit.COUNT) -> Gauge:
        """Get or create a gauge."""
        with self._lock:
            if name not in self.gauges:
                self.gauges[name] = Gauge(self, name, description, unit)
            return self.gauges[name]

    def get_histogram(self, name: str, description: str = "", unit: MetricUnit = MetricUnit.MILLISECONDS,
                      buckets: List[float] = None) -> Histogram:
        """Get or create a histogram."""
        with self._lock:
            if name not in self.histograms:
                self.histograms[name] = Histogram(self, name, description, unit, buckets)
            return self.histograms[name]

    def record_process_memory(self) -> Dict[str, int]:
        """Sample resident and virtual memory of the current process."""
        memory = psutil.Process().memory_info()
        self.record_metric('process_memory_rss_bytes', memory.rss, MetricType.GAUGE, MetricUnit.BYTES)
        return {'rss': memory.rss, 'vms': memory.vms}

    def get_metrics_summary(self, window_minutes: int = 5) -> Dict[str, Any]:
        """Get summary of all metrics."""
        with self._lock:
            series_items = list(self.metrics.items())
            collection_stats = self.stats.copy()

        summary = {
            'total_metrics': len(series_items),
            'collection_stats': collection_stats,
            'metrics': {}
        }

        for series_key, series in series_items:
            latest_value = series.get_latest_value()
            summary['metrics'][series_key] = {
                'name': series.name,
                'type': series.metric_type.value,
                'unit': series.unit.value,
                'latest_value': latest_value.value if latest_value else None,
                'latest_timestamp': latest_value.timestamp.isoformat() if latest_value else None,
                'statistics': series.calculate_statistics(window_minutes),
                'value_count': len(series.values)
            }

        return summary

    def export_metrics(self, format_type: str = 'json') -> str:
        """Export metrics in specified format."""
        if format_type == 'json':
            return json.dumps(self.get_metrics_summary(), default=str, indent=2)
        elif format_type == 'prometheus':
            return self._export_prometheus_format()
        else:
            raise ValueError(f"Unsupported format: {format_type}")

    def _export_prometheus_format(self) -> str:
        """Export metrics in Prometheus format."""
        lines = []
        described = set()

        with self._lock:
            series_list = sorted(self.metrics.values(), key=lambda s: s.name)

        for series in series_list:
            latest_value = series.get_latest_value()
            if not latest_value:
                continue

            metric_name = series.name.replace('-', '_').replace('.', '_')
            if metric_name not in described:
                lines.append(f"# HELP {metric_name} {series.description or series.name}")
                lines.append(f"# TYPE {metric_name} {series.metric_type.value}")
                described.add(metric_name)

            labels = [f'{k}="{v}"' for k, v in latest_value.labels.items()]
            label_str = '{' + ','.join(labels) + '}' if labels else ''
            lines.append(f"{metric_name}{label_str} {latest_value.value}")

        return '\n'.join(lines)

    def reset(self):
        """Drop every recorded series and zero all counters, gauges and histograms."""
        with self._lock:
            self.metrics.clear()
            for metric in [*self.counters.values(), *self.gauges.values(), *self.histograms.values()]:
                metric.reset()
            self.stats['metrics_recorded'] = 0
            self.stats['last_collection_time'] = None

        self.logger.debug("Metrics reset", operation="reset")
