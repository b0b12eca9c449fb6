from .logger import configure_logger, get_logger
from .metrics import PerformanceTracker

__all__ = [
    "PerformanceTracker",
    "configure_logger",
    "get_logger",
]
