"""数据库操作模块"""

from .database import Database
from .task_repository import TaskRepository
from .mapping_store import MappingStore
from .status_tracker import SyncStatusTracker

__all__ = ["Database", "TaskRepository", "MappingStore", "SyncStatusTracker"]
