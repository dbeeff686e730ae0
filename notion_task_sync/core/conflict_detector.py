"""
字段级冲突检测器
"""
from typing import List

from loguru import logger

from .field_mapper import FieldMapper
from .types import LocalTask, RemotePage, FieldMapping, SyncConflict


class ConflictDetector:
    """比较本地任务与 Notion 页面，产出字段级冲突

    纯函数：同样的输入总是得到同样的冲突序列，可重复调用。
    """

    def __init__(self, field_mapper: FieldMapper):
        self.mapper = field_mapper

    def detect(self, task: LocalTask, page: RemotePage,
               mapping: FieldMapping) -> List[SyncConflict]:
        """检测冲突"""
        # 首次同步没有基线，差异由远端覆盖，不算冲突
        if task.last_synced_at is None:
            return []

        conflicts = []
        for local_field, property_id in mapping.items():
            local_value = task.get(local_field)
            remote_value = self.remote_value(page, local_field, property_id)

            if self.mapper.values_equal(local_field, local_value, remote_value):
                continue

            conflicts.append(SyncConflict(
                task_id=task.id,
                notion_id=page.id,
                field=local_field,
                local_value=local_value,
                remote_value=remote_value,
                local_updated_at=task.updated_at,
                remote_updated_at=page.last_edited_time
            ))

        if conflicts:
            logger.debug(f"Detected {len(conflicts)} conflicts for task {task.id}: "
                         f"{[c.field for c in conflicts]}")
        return conflicts

    def remote_value(self, page: RemotePage, local_field: str, property_id: str):
        """取远端属性并转换为本地字段表示"""
        return self.mapper.remote_to_local(
            local_field,
            page.property_types.get(property_id),
            page.properties.get(property_id)
        )
