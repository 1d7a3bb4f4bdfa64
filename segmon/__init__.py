"""Size-based rollover controller for continuously recorded segment files."""

from segmon.config import SegmentConfig, SegmentConfigError
from segmon.monitor import COOLDOWN_SECONDS, SegmentMonitor, SwitchRequest

__all__ = [
    "COOLDOWN_SECONDS",
    "SegmentConfig",
    "SegmentConfigError",
    "SegmentMonitor",
    "SwitchRequest",
]
