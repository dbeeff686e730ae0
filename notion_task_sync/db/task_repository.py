"""
本地任务存储
"""
from typing import Dict, List, Any, Optional
from datetime import datetime, date
from loguru import logger

from .database import Database
from ..core.field_mapper import LOCAL_FIELD_TYPES
from ..core.exceptions import TaskNotFound
from ..core.types import LocalTask, FieldType, as_utc


class TaskRepository:
    """本地任务读写，所有操作都限定在任务所属用户内"""

    def __init__(self, database: Database):
        self.db = database

    def get_task(self, user_id: str, task_id: str) -> Optional[LocalTask]:
        """按ID读取任务"""
        row = self.db.query_one(
            "SELECT * FROM tasks WHERE id = %s AND user_id = %s",
            (task_id, user_id)
        )
        return self._row_to_task(row) if row else None

    def list_linked_tasks(self, user_id: str, database_id: str) -> List[LocalTask]:
        """列出已关联到指定 Notion 数据库的任务"""
        rows = self.db.query(
            """
            SELECT * FROM tasks
            WHERE user_id = %s AND notion_database_id = %s AND notion_id IS NOT NULL
            ORDER BY id ASC
            """,
            (user_id, database_id)
        )
        return [self._row_to_task(row) for row in rows]

    def update_fields(self, user_id: str, task_id: str,
                      values: Dict[str, Any], synced_at: datetime) -> int:
        """更新映射字段并记录 last_synced_at"""
        unknown = [name for name in values if name not in LOCAL_FIELD_TYPES]
        if unknown:
            raise ValueError(f"Unknown task fields: {unknown}")

        data = {name: self._to_column(name, value) for name, value in values.items()}
        data['last_synced_at'] = as_utc(synced_at).replace(tzinfo=None)

        affected = self.db.update('tasks', data, {'id': task_id, 'user_id': user_id})
        if affected == 0:
            raise TaskNotFound(user_id, task_id)
        logger.debug(f"Updated task {task_id} fields {list(values)}")
        return affected

    def _to_column(self, field_name: str, value: Any) -> Any:
        """字段值转换为列值"""
        field_type = LOCAL_FIELD_TYPES[field_name]

        if value is None:
            return None

        if field_type == FieldType.MULTI_SELECT:
            if isinstance(value, str):
                return value
            return ','.join(str(item) for item in value)

        if field_type == FieldType.DATE:
            if isinstance(value, datetime):
                return as_utc(value).replace(tzinfo=None)
            if isinstance(value, date):
                return datetime(value.year, value.month, value.day)
            return value

        if field_type == FieldType.PEOPLE and isinstance(value, list):
            return value[0] if value else None

        return value

    def _row_to_task(self, row: Dict[str, Any]) -> LocalTask:
        """数据库行转换为任务对象"""
        values = {}
        for name, field_type in LOCAL_FIELD_TYPES.items():
            value = row.get(name)
            if field_type == FieldType.MULTI_SELECT:
                value = [item for item in (value or '').split(',') if item]
            elif field_type == FieldType.DATE and isinstance(value, datetime):
                value = as_utc(value)
            values[name] = value

        return LocalTask(
            id=str(row['id']),
            user_id=str(row['user_id']),
            notion_id=row.get('notion_id'),
            notion_database_id=row.get('notion_database_id'),
            values=values,
            updated_at=as_utc(row.get('updated_at')),
            last_synced_at=as_utc(row.get('last_synced_at'))
        )
