"""
Monitoring and observability package.

This package contains alerting and metrics components.
"""

from volumebot.monitoring.alerting import Alert, AlertConfig, AlertManager, AlertSeverity, AlertType
from volumebot.monitoring.metrics import VolumeMetrics, start_metrics_server

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "VolumeMetrics",
    "start_metrics_server",
]
