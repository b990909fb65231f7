"""
Metrics Module: Diagnostics, counters, histograms.

- Counters: messages_published, decode_errors, nmea_parse_errors, etc.
- Histograms: predict dt, loop overrun, innovation norm
- Drop reason codes for every discarded input

Usage:
    from nav_core.metrics import get_metrics

    metrics = get_metrics()
    metrics.increment('messages_published')
    metrics.increment_drop('decode_error')
    metrics.record_histogram('ekf_predict_dt_s', 0.01)
"""

from .counters import MetricsCollector

# Global singleton for easy access
_global_metrics = None


def get_metrics() -> MetricsCollector:
    """
    Get the global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def reset_metrics():
    """Reset global metrics (for testing)."""
    get_metrics().reset()


__all__ = ['MetricsCollector', 'get_metrics', 'reset_metrics']
