"""Health layer -- per-symbol health checks and the scheduled anomaly detector."""

from oracle_watch.health.checker import HealthChecker
from oracle_watch.health.detector import AnomalyDetector

__all__ = ["AnomalyDetector", "HealthChecker"]
