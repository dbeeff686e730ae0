"""
同步异常定义
"""
from typing import Optional, Any


class SyncError(Exception):
    """同步基础异常"""


class MappingNotFound(SyncError):
    """(用户, 数据库) 没有字段映射，周期无法开始"""

    def __init__(self, user_id: str, database_id: str):
        self.user_id = user_id
        self.database_id = database_id
        super().__init__(f"No field mapping for user {user_id} and database {database_id}")


class InvalidMapping(SyncError):
    """字段映射校验失败"""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(f"Invalid field mapping: {'; '.join(self.errors)}")


class TaskNotFound(SyncError, LookupError):
    """本地任务不存在或不属于该用户"""

    def __init__(self, user_id: str, task_id: str):
        self.user_id = user_id
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found for user {user_id}")


class ConcurrentCycleRejected(SyncError):
    """同一 (用户, 数据库) 已有同步周期在运行"""

    def __init__(self, user_id: str, database_id: str):
        self.user_id = user_id
        self.database_id = database_id
        super().__init__(f"Sync cycle already running for user {user_id} and database {database_id}")


class NotionAPIError(SyncError):
    """Notion API 请求失败"""

    RETRYABLE_STATUS = (429, 500, 502, 503, 504)

    def __init__(self, message: str, status: Optional[int] = None,
                 code: Optional[str] = None, retry_after: Optional[float] = None):
        self.status = status
        self.code = code
        self.retry_after = retry_after
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status in self.RETRYABLE_STATUS or self.code == 'rate_limited'


class RemoteUnavailable(SyncError):
    """远端在有限次退避后仍不可用（可稍后重试）"""

    def __init__(self, message: str, attempts: int = 0, last_error: Optional[Exception] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class ApplyError(SyncError):
    """写入阶段失败，report 中记录已完成与失败的字段"""

    def __init__(self, message: str, report: Any = None):
        self.report = report
        super().__init__(message)


class PartialApplyFailure(ApplyError):
    """部分字段写入失败"""

    @property
    def failures(self):
        return self.report.failures if self.report else []


class SyncCancelled(ApplyError):
    """周期在字段之间被取消"""
