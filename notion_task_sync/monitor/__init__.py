"""监控模块"""

from .metrics import MetricsCollector
from .logger import setup_logger

__all__ = ["MetricsCollector", "setup_logger"]
