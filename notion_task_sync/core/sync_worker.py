"""
同步工作器
"""
import time
import threading
from typing import Any, List, Optional
from loguru import logger

from .conflict_detector import ConflictDetector
from .conflict_resolver import ConflictResolver
from .exceptions import (
    ApplyError, ConcurrentCycleRejected, MappingNotFound, NotionAPIError,
    RemoteUnavailable, SyncCancelled
)
from .field_mapper import FieldMapper
from .resolution_applier import ResolutionApplier
from .types import (
    ApplyReport, FieldFailure, ResolutionStrategy, SyncConflict,
    SyncCycleResult, SyncOutcome, SyncState
)


class SyncWorker:
    """同步工作器，执行单个 (用户, 数据库) 的一次同步周期

    检测 -> 解决 -> 写入，按任务逐个进行。周期开始前通过状态表
    的 compare-and-set 获取 running，结束时写回 idle 或 error。
    """

    def __init__(self, notion_client,
                 task_repository,
                 mapping_store,
                 status_tracker,
                 field_mapper: FieldMapper,
                 schema_cache,
                 metrics=None):
        self.notion = notion_client
        self.tasks = task_repository
        self.mappings = mapping_store
        self.status = status_tracker
        self.mapper = field_mapper
        self.schema_cache = schema_cache
        self.metrics = metrics

        self.detector = ConflictDetector(field_mapper)
        self.resolver = ConflictResolver()

    def run_cycle(self, user_id: str, database_id: str,
                  strategy: Any = None,
                  cancel_event: Optional[threading.Event] = None) -> SyncCycleResult:
        """执行一次同步周期"""
        mapping = self.mappings.get_mapping(user_id, database_id)
        if mapping is None:
            logger.error(f"No mapping for {user_id}/{database_id}, sync aborted")
            raise MappingNotFound(user_id, database_id)

        strategy = ResolutionStrategy.parse(
            strategy if strategy is not None else mapping.default_strategy
        )

        cycle_token = self.status.try_begin_cycle(user_id, database_id)
        if not cycle_token:
            logger.warning(f"Sync already running for {user_id}/{database_id}, rejected")
            if self.metrics:
                self.metrics.record_cycle('rejected')
            raise ConcurrentCycleRejected(user_id, database_id)

        logger.info(f"Sync cycle started for {user_id}/{database_id} with {strategy.value}")
        start_time = time.time()

        report = ApplyReport()
        manual_conflicts: List[SyncConflict] = []
        seeded = 0
        error = None

        try:
            schema = self.schema_cache.get_or_load(database_id, self.notion.get_database)
            applier = ResolutionApplier(
                self.tasks, self.notion, self.mapper, mapping, schema
            )

            for task in self.tasks.list_linked_tasks(user_id, database_id):
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    break

                # 每个任务前刷新 running，锁被接管时停止写入
                if not self.status.heartbeat(user_id, database_id, cycle_token):
                    logger.error(f"Running lock for {user_id}/{database_id} was taken over, stopping cycle")
                    error = "Running lock taken over by another cycle"
                    break

                try:
                    page = self.notion.fetch_page(task.notion_id)
                except NotionAPIError as e:
                    report.failures.append(FieldFailure(
                        task_id=task.id, notion_id=task.notion_id,
                        field='*', stage='fetch', error=str(e)
                    ))
                    continue

                if task.last_synced_at is None:
                    try:
                        applier.adopt_remote(user_id, task, page)
                        seeded += 1
                    except Exception as e:
                        logger.error(f"Failed to seed task {task.id}: {e}")
                        report.failures.append(FieldFailure(
                            task_id=task.id, notion_id=page.id,
                            field=','.join(mapping.fields), stage='local', error=str(e)
                        ))
                    continue

                conflicts = self.detector.detect(task, page, mapping)
                if not conflicts:
                    continue

                resolutions = self.resolver.resolve(conflicts, strategy)
                manual_conflicts.extend(
                    conflict for conflict, resolution in zip(conflicts, resolutions)
                    if resolution.is_manual
                )

                try:
                    report.merge(applier.apply(user_id, resolutions, cancel_event))
                except ApplyError as e:
                    report.merge(e.report)
                    if isinstance(e, SyncCancelled):
                        break

        except RemoteUnavailable as e:
            logger.error(f"Notion unavailable during sync of {user_id}/{database_id}: {e}")
            error = str(e)

        except Exception as e:
            logger.error(f"Sync cycle failed for {user_id}/{database_id}: {e}")
            self.status.finish_cycle(
                user_id, database_id, SyncState.ERROR,
                f"{e} ({report.applied_count} fields applied)",
                cycle_token=cycle_token
            )
            if self.metrics:
                self.metrics.record_cycle(SyncOutcome.FAILED.value, time.time() - start_time)
                self.metrics.record_error('sync_cycle', str(e))
            raise

        result = self._finish(user_id, database_id, strategy, report,
                              manual_conflicts, seeded, error, cycle_token)

        if self.metrics:
            self.metrics.record_cycle(result.outcome.value, time.time() - start_time)
            self.metrics.record_fields(report)

        return result

    def _finish(self, user_id: str, database_id: str,
                strategy: ResolutionStrategy, report: ApplyReport,
                manual_conflicts: List[SyncConflict], seeded: int,
                error: Optional[str],
                cycle_token: Optional[str] = None) -> SyncCycleResult:
        """写回最终状态并组装结果"""
        applied = report.applied_count

        if report.cancelled:
            detail = f"Cancelled after {applied} fields applied"
        elif error:
            detail = f"{error} ({applied} fields applied before failure)"
        elif report.failures:
            failed = ', '.join(f"{f.task_id}.{f.field}({f.stage})" for f in report.failures)
            detail = f"Partial apply failure, {applied} fields applied, failed: {failed}"
        else:
            detail = None

        state = SyncState.ERROR if detail else SyncState.IDLE
        self.status.finish_cycle(user_id, database_id, state, detail, cycle_token=cycle_token)

        if state == SyncState.ERROR:
            outcome = SyncOutcome.FAILED
            logger.error(f"Sync cycle for {user_id}/{database_id} ended with error: {detail}")
        elif manual_conflicts:
            outcome = SyncOutcome.MANUAL_PENDING
            logger.info(f"Sync cycle for {user_id}/{database_id} applied {applied} fields, "
                        f"{len(manual_conflicts)} conflicts need manual resolution")
        else:
            outcome = SyncOutcome.APPLIED
            logger.info(f"Sync cycle for {user_id}/{database_id} applied {applied} fields, "
                        f"seeded {seeded} tasks")

        return SyncCycleResult(
            user_id=user_id,
            database_id=database_id,
            strategy=strategy,
            outcome=outcome,
            status=state,
            applied_count=applied,
            seeded_count=seeded,
            manual_conflicts=manual_conflicts,
            failures=list(report.failures),
            error=detail
        )
