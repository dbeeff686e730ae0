"""
冲突解决结果写入器
"""
import threading
from typing import Dict, Any, Callable, Iterable, Optional
from datetime import datetime
from loguru import logger

from ..notion.properties import encode_property
from .exceptions import PartialApplyFailure, SyncCancelled
from .field_mapper import FieldMapper
from .types import (
    ApplyReport, ConflictResolution, FieldFailure, FieldMapping, LocalTask,
    RemotePage, utcnow
)


class ResolutionApplier:
    """将解决结果逐字段写入两侧：先本地，后 Notion

    两侧没有共同事务，单个字段失败不影响批次中的其他字段；
    Notion 写入失败时本地已领先，留给下个周期重新检测，不在这里重试。
    """

    def __init__(self, task_repository, notion_client,
                 field_mapper: FieldMapper,
                 mapping: FieldMapping,
                 schema: Dict[str, Dict[str, Any]],
                 clock: Callable[[], datetime] = utcnow):
        self.tasks = task_repository
        self.notion = notion_client
        self.mapper = field_mapper
        self.mapping = mapping
        self.schema = schema
        self._clock = clock

    def apply(self, user_id: str, resolutions: Iterable[ConflictResolution],
              cancel_event: Optional[threading.Event] = None) -> ApplyReport:
        """按输入顺序写入，失败在批次结束后统一抛出"""
        report = ApplyReport()

        for resolution in resolutions:
            if resolution.is_manual:
                report.skipped_manual.append(resolution)
                continue

            # 只在字段之间响应取消
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.warning(f"Apply cancelled after {report.applied_count} fields")
                break

            self._apply_one(user_id, resolution, report)

        if report.cancelled:
            raise SyncCancelled(
                f"Cancelled after {report.applied_count} fields applied", report
            )

        if report.failures:
            fields = ', '.join(f"{f.task_id}.{f.field}({f.stage})" for f in report.failures)
            raise PartialApplyFailure(
                f"{len(report.failures)} field writes failed: {fields}", report
            )

        return report

    def _apply_one(self, user_id: str, resolution: ConflictResolution,
                   report: ApplyReport) -> None:
        field_name = resolution.field
        value = resolution.resolved_value

        # 先完成编码，编码失败时两侧都不写
        try:
            property_id, payload = self._encode(field_name, value)
        except (KeyError, ValueError) as e:
            logger.error(f"Cannot encode {field_name} for page {resolution.notion_id}: {e}")
            report.failures.append(self._failure(resolution, 'encode', e))
            return

        try:
            self.tasks.update_fields(user_id, resolution.task_id, {field_name: value}, self._clock())
        except Exception as e:
            logger.error(f"Local write failed for task {resolution.task_id}.{field_name}: {e}")
            report.failures.append(self._failure(resolution, 'local', e))
            return

        try:
            self.notion.write_properties(resolution.notion_id, {property_id: payload})
        except Exception as e:
            logger.error(f"Remote write failed for page {resolution.notion_id}.{field_name}, "
                         f"local store is ahead until next cycle: {e}")
            report.failures.append(self._failure(resolution, 'remote', e))
            return

        report.applied.append(resolution)
        logger.debug(f"Applied {field_name} for task {resolution.task_id} ({resolution.strategy.value})")

    def _encode(self, field_name: str, value: Any):
        property_id = self.mapping.fields.get(field_name)
        if property_id is None:
            raise KeyError(f"field {field_name} is not mapped")

        prop = self.schema.get(property_id)
        if prop is None:
            raise KeyError(f"property {property_id} not found in database schema")

        prop_type = prop.get('type')
        remote_value = self.mapper.local_to_remote(field_name, prop_type, value)
        return property_id, encode_property(prop_type, remote_value)

    def adopt_remote(self, user_id: str, task: LocalTask, page: RemotePage) -> Dict[str, Any]:
        """首次同步：本地直接采用远端取值并建立同步基线"""
        values = {
            field_name: self.mapper.remote_to_local(
                field_name,
                page.property_types.get(property_id),
                page.properties.get(property_id)
            )
            for field_name, property_id in self.mapping.items()
        }

        self.tasks.update_fields(user_id, task.id, values, self._clock())
        logger.debug(f"Seeded task {task.id} from page {page.id}")
        return values

    @staticmethod
    def _failure(resolution: ConflictResolution, stage: str, error: Exception) -> FieldFailure:
        return FieldFailure(
            task_id=resolution.task_id,
            notion_id=resolution.notion_id,
            field=resolution.field,
            stage=stage,
            error=str(error)
        )
