"""同步类型定义"""

from enum import Enum, IntEnum
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger


class FieldType(IntEnum):
    """字段类型枚举"""
    STRING = 1
    NUMBER = 2
    SELECT = 3
    MULTI_SELECT = 4
    DATE = 5
    PEOPLE = 11


class ResolutionStrategy(Enum):
    """冲突解决策略"""
    REMOTE_WINS = "remote-wins"
    LOCAL_WINS = "local-wins"
    LATEST_WINS = "latest-wins"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: Any) -> 'ResolutionStrategy':
        """解析策略，未知值回退到 remote-wins"""
        if isinstance(value, cls):
            return value
        name = str(value or '').strip().lower()
        name = _STRATEGY_ALIASES.get(name, name)
        for strategy in cls:
            if strategy.value == name:
                return strategy
        logger.warning(f"Unknown resolution strategy {value!r}, falling back to remote-wins")
        return cls.REMOTE_WINS


_STRATEGY_ALIASES = {
    'notion': 'remote-wins',
    'remote': 'remote-wins',
    'local': 'local-wins',
    'latest': 'latest-wins',
}


class SyncState(Enum):
    """同步状态枚举"""
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class SyncOutcome(Enum):
    """同步周期结果"""
    APPLIED = "applied"
    MANUAL_PENDING = "manual_pending"
    FAILED = "failed"


@dataclass
class LocalTask:
    """本地任务"""
    id: str
    user_id: str
    notion_id: Optional[str]
    notion_database_id: Optional[str]
    values: Dict[str, Any]
    updated_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    def get(self, field_name: str) -> Any:
        return self.values.get(field_name)


@dataclass
class RemotePage:
    """Notion 页面快照（单个周期内有效）"""
    id: str
    last_edited_time: Optional[datetime]
    properties: Dict[str, Any]
    property_types: Dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None


@dataclass
class FieldMapping:
    """字段映射: 本地字段 -> Notion 属性ID，顺序即应用顺序"""
    user_id: str
    database_id: str
    fields: Dict[str, str]
    default_strategy: str = ResolutionStrategy.REMOTE_WINS.value
    updated_at: Optional[datetime] = None

    def items(self):
        return self.fields.items()


@dataclass
class SyncStatusRecord:
    """(用户, 数据库) 的同步状态"""
    user_id: str
    database_id: str
    state: SyncState
    error: Optional[str] = None
    updated_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'database_id': self.database_id,
            'status': self.state.value,
            'error': self.error,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'last_synced_at': self.last_synced_at.isoformat() if self.last_synced_at else None
        }


@dataclass(frozen=True)
class SyncConflict:
    """字段级冲突"""
    task_id: str
    notion_id: str
    field: str
    local_value: Any
    remote_value: Any
    local_updated_at: Optional[datetime]
    remote_updated_at: Optional[datetime]


@dataclass(frozen=True)
class ManualChoice:
    """manual 策略下保留的两侧取值"""
    local: Any
    remote: Any


@dataclass(frozen=True)
class ConflictResolution:
    """冲突解决结果"""
    task_id: str
    notion_id: str
    field: str
    resolved_value: Any
    strategy: ResolutionStrategy

    @property
    def is_manual(self) -> bool:
        return self.strategy is ResolutionStrategy.MANUAL


@dataclass
class FieldFailure:
    """单个字段写入失败"""
    task_id: str
    notion_id: str
    field: str
    stage: str  # 'encode' / 'local' / 'remote' / 'fetch'
    error: str


@dataclass
class ApplyReport:
    """一批解决结果的写入报告"""
    applied: List[ConflictResolution] = field(default_factory=list)
    failures: List[FieldFailure] = field(default_factory=list)
    skipped_manual: List[ConflictResolution] = field(default_factory=list)
    cancelled: bool = False

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    def merge(self, other: 'ApplyReport') -> None:
        self.applied.extend(other.applied)
        self.failures.extend(other.failures)
        self.skipped_manual.extend(other.skipped_manual)
        self.cancelled = self.cancelled or other.cancelled


@dataclass
class SyncCycleResult:
    """同步周期结果"""
    user_id: str
    database_id: str
    strategy: ResolutionStrategy
    outcome: SyncOutcome
    status: SyncState
    applied_count: int = 0
    seeded_count: int = 0
    manual_conflicts: List[SyncConflict] = field(default_factory=list)
    failures: List[FieldFailure] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'database_id': self.database_id,
            'strategy': self.strategy.value,
            'outcome': self.outcome.value,
            'status': self.status.value,
            'applied_count': self.applied_count,
            'seeded_count': self.seeded_count,
            'manual_conflicts': [c.__dict__ for c in self.manual_conflicts],
            'failures': [f.__dict__ for f in self.failures],
            'error': self.error
        }


def utcnow() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """统一为带时区的 UTC 时间，无时区的值按 UTC 处理"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
