# ==============================================
# TOPIC 4: MONITORING
# ==============================================
#
# Passive throughput / latency / memory counters.
#
# Modules:
# --------
# - metrics_collector.py → MetricsCollector and MetricsSnapshot
#
# ==============================================

from .metrics_collector import MetricsCollector, MetricsSnapshot

__all__ = ["MetricsCollector", "MetricsSnapshot"]
