"""
配置管理模块
"""
import json
import os
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class DatabaseConfig:
    """本地任务库配置"""
    host: str
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = ""
    charset: str = "utf8mb4"
    pool_size: int = 5
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'charset': self.charset
        }


@dataclass
class NotionConfig:
    """Notion 配置"""
    token: str
    base_url: str = "https://api.notion.com/v1"
    api_version: str = "2022-06-28"
    timeout: int = 30


@dataclass
class SyncConfig:
    """同步配置"""
    default_strategy: str = "remote-wins"  # 冲突解决策略
    poll_interval: int = 900  # 定时同步间隔（秒）
    max_requests_per_second: int = 3  # Notion 限流
    max_attempts: int = 5  # 退避重试次数上限
    initial_backoff: float = 1.0  # 首次退避（秒）
    backoff_multiplier: float = 2.0
    max_backoff_delay: float = 10.0  # 最大退避（秒）
    running_timeout: int = 1800  # running 状态超时接管（秒）
    enable_cache: bool = True  # 是否启用 schema 缓存
    cache_ttl: int = 3600  # 缓存过期时间（秒）
    
    # 默认字段映射: {"数据库ID": {"本地字段": "Notion属性ID"}}
    default_mappings: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class MonitorConfig:
    """监控配置"""
    enable_metrics: bool = True
    alert_webhook: Optional[str] = None
    log_level: str = "INFO"
    log_file: str = "logs/notion_task_sync.log"
    log_max_size: str = "100MB"
    log_backup_count: int = 10


VALID_STRATEGIES = ("remote-wins", "local-wins", "latest-wins", "manual")


class Config:
    """配置管理器"""
    
    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config_file()
        self._data: Dict[str, Any] = {}
        
        # 配置对象
        self.database: Optional[DatabaseConfig] = None
        self.notion: Optional[NotionConfig] = None
        self.sync: Optional[SyncConfig] = None
        self.monitor: Optional[MonitorConfig] = None
        
        # 加载配置
        self.load()
    
    def _find_config_file(self) -> str:
        """查找配置文件"""
        search_paths = [
            Path.cwd() / "config.json",
            Path.cwd() / "config" / "config.json",
            Path.home() / ".notion_task_sync" / "config.json",
            Path("/etc/notion_task_sync/config.json")
        ]
        
        for path in search_paths:
            if path.exists():
                return str(path)
        
        # 默认配置文件路径
        return str(Path.cwd() / "config.json")
    
    def load(self) -> None:
        """加载配置文件"""
        if not os.path.exists(self.config_path):
            self._create_default_config()
        
        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._data = json.load(f)
        
        self._parse_config()
    
    def _parse_config(self) -> None:
        """解析配置"""
        self.database = DatabaseConfig(**self._data.get('database', {}))
        self.notion = NotionConfig(**self._data.get('notion', {}))
        self.sync = SyncConfig(**self._data.get('sync', {}))
        self.monitor = MonitorConfig(**self._data.get('monitor', {}))
    
    def _create_default_config(self) -> None:
        """创建默认配置文件"""
        default_config = {
            "database": {
                "host": "localhost",
                "port": 3306,
                "user": "root",
                "password": "",
                "database": "notion_task_sync"
            },
            "notion": {
                "token": "your_integration_token"
            },
            "sync": {
                "default_strategy": "remote-wins",
                "poll_interval": 900,
                "max_requests_per_second": 3,
                "max_attempts": 5
            },
            "monitor": {
                "enable_metrics": True,
                "log_level": "INFO",
                "log_file": "logs/notion_task_sync.log"
            }
        }
        
        config_dir = os.path.dirname(self.config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(default_config, f, indent=4, ensure_ascii=False)
        
        self._data = default_config
    
    def save(self) -> None:
        """保存配置"""
        config_dict = {
            "database": self.database.__dict__ if self.database else {},
            "notion": self.notion.__dict__ if self.notion else {},
            "sync": self.sync.__dict__ if self.sync else {},
            "monitor": self.monitor.__dict__ if self.monitor else {}
        }
        if 'redis' in self._data:
            config_dict['redis'] = self._data['redis']
        
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(config_dict, f, indent=4, ensure_ascii=False)
    
    def validate(self) -> bool:
        """验证配置是否有效"""
        if not self.notion or not self.notion.token:
            raise ValueError("Notion 配置缺少 token")
        
        if not self.database or not self.database.host or not self.database.database:
            raise ValueError("数据库配置缺少必要信息")
        
        if not self.sync or self.sync.default_strategy not in VALID_STRATEGIES:
            raise ValueError(f"未知的默认冲突策略: {self.sync.default_strategy if self.sync else None}")
        
        if self.sync.max_attempts < 1:
            raise ValueError("max_attempts 必须大于 0")
        
        return True
    
    def get(self, key: str, default: Any = None) -> Any:
        """获取配置值"""
        keys = key.split('.')
        value = self._data
        
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        
        return value
    
    def set(self, key: str, value: Any) -> None:
        """设置配置值"""
        keys = key.split('.')
        data = self._data
        
        for k in keys[:-1]:
            if k not in data:
                data[k] = {}
            data = data[k]
        
        data[keys[-1]] = value
        self._parse_config()
    
    def reload(self) -> None:
        """重新加载配置"""
        self.load()
