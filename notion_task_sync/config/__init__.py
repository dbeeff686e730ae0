"""配置模块"""

from .config import Config, DatabaseConfig, NotionConfig, SyncConfig, MonitorConfig

__all__ = ["Config", "DatabaseConfig", "NotionConfig", "SyncConfig", "MonitorConfig"]
