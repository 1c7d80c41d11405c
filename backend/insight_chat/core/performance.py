"""
Performance monitoring and metrics collection.

Pipeline steps (profiling, completion attempts, normalization, whole turns)
are timed with `track_performance`; `/api/metrics` reports the aggregates.
"""
import time
import inspect
import logging
import threading
from collections import defaultdict
from functools import wraps
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_SAMPLES_PER_METRIC = 1000

_metrics_lock = threading.RLock()
_metrics: Dict[str, List[Dict[str, Any]]] = defaultdict(list)


class PerformanceMonitor:
    """Monitor and track performance metrics."""

    @staticmethod
    def record_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None):
        """
        Record a performance metric.

        Args:
            name: Metric name (e.g., 'profile_csv', 'completion_invoke')
            value: Metric value (usually duration in seconds)
            metadata: Optional metadata (status, error, attempt...)
        """
        with _metrics_lock:
            samples = _metrics[name]
            samples.append({
                'value': value,
                'timestamp': time.time(),
                'metadata': metadata or {}
            })
            if len(samples) > MAX_SAMPLES_PER_METRIC:
                _metrics[name] = samples[-MAX_SAMPLES_PER_METRIC:]

    @staticmethod
    def get_stats(metric_name: str) -> Optional[Dict[str, float]]:
        """
        Get statistics for a metric.

        Returns:
            Dict with count, min, max, mean, error count and percentiles,
            or None if no data
        """
        with _metrics_lock:
            samples = _metrics.get(metric_name)
            if not samples:
                return None

            values = sorted(m['value'] for m in samples)
            errors = sum(1 for m in samples if m['metadata'].get('status') == 'error')
            return {
                'count': len(values),
                'errors': errors,
                'min': values[0],
                'max': values[-1],
                'mean': sum(values) / len(values),
                'p50': values[len(values) // 2],
                'p95': values[int(len(values) * 0.95)],
                'p99': values[int(len(values) * 0.99)],
            }

    @staticmethod
    def get_all_metrics() -> Dict[str, Dict[str, float]]:
        """Get statistics for all metrics."""
        with _metrics_lock:
            return {
                name: PerformanceMonitor.get_stats(name)
                for name in list(_metrics.keys())
            }

    @staticmethod
    def clear_metrics():
        """Clear all metrics (useful for testing)."""
        with _metrics_lock:
            _metrics.clear()


def _finish(metric_name: str, start_time: float, error: Optional[BaseException] = None) -> None:
    duration = time.perf_counter() - start_time
    if error is None:
        PerformanceMonitor.record_metric(metric_name, duration, {'status': 'success'})
        logger.debug(
            f"{metric_name} completed in {duration:.3f}s",
            extra={'metric': metric_name, 'duration': duration}
        )
    else:
        PerformanceMonitor.record_metric(
            metric_name, duration, {'status': 'error', 'error': type(error).__name__}
        )
        logger.debug(
            f"{metric_name} failed after {duration:.3f}s: {type(error).__name__}",
            extra={'metric': metric_name, 'duration': duration}
        )


def track_performance(metric_name: str):
    """
    Decorator to track function execution time.

    Works on plain functions and coroutine functions. Failures are recorded
    with status 'error' and re-raised untouched.

    Usage:
        @track_performance("profile_csv")
        def profile_csv(...):
            ...
    """
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _finish(metric_name, start_time, e)
                    raise
                _finish(metric_name, start_time)
                return result
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _finish(metric_name, start_time, e)
                raise
            _finish(metric_name, start_time)
            return result
        return sync_wrapper

    return decorator
