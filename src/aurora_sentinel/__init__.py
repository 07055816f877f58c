"""
Aurora Sentinel - Real-time Aurora and Substorm Alerts
======================================================

Fuses solar-wind, geosynchronous and ground magnetometer feeds into a
substorm likelihood, and pushes threshold-crossing alerts (aurora score,
flares, substorms, interplanetary shocks) to Web Push subscribers.
"""

__version__ = "1.0.0"

from aurora_sentinel.monitoring.constants import SubstormStatus, Topic
from aurora_sentinel.monitoring.fusion import FusionContext, build_context

__all__ = [
    "SubstormStatus",
    "Topic",
    "FusionContext",
    "build_context",
]
