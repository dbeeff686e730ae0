"""
冲突解决器
"""
from typing import Any, Callable, Dict, Iterable, List

from loguru import logger

from .types import (
    ConflictResolution, ManualChoice, ResolutionStrategy, SyncConflict, as_utc
)


def _remote_wins(conflict: SyncConflict) -> Any:
    return conflict.remote_value


def _local_wins(conflict: SyncConflict) -> Any:
    return conflict.local_value


def _latest_wins(conflict: SyncConflict) -> Any:
    local_at = as_utc(conflict.local_updated_at)
    remote_at = as_utc(conflict.remote_updated_at)
    # 时间相同或缺失时取远端
    if local_at is not None and (remote_at is None or local_at > remote_at):
        return conflict.local_value
    return conflict.remote_value


def _manual(conflict: SyncConflict) -> Any:
    return ManualChoice(local=conflict.local_value, remote=conflict.remote_value)


_POLICIES: Dict[ResolutionStrategy, Callable[[SyncConflict], Any]] = {
    ResolutionStrategy.REMOTE_WINS: _remote_wins,
    ResolutionStrategy.LOCAL_WINS: _local_wins,
    ResolutionStrategy.LATEST_WINS: _latest_wins,
    ResolutionStrategy.MANUAL: _manual,
}


class ConflictResolver:
    """按策略为每个冲突给出解决值"""

    def resolve(self, conflicts: Iterable[SyncConflict],
                strategy: Any) -> List[ConflictResolution]:
        """解决冲突，结果与输入一一对应"""
        strategy = ResolutionStrategy.parse(strategy)
        policy = _POLICIES[strategy]

        resolutions = [
            ConflictResolution(
                task_id=conflict.task_id,
                notion_id=conflict.notion_id,
                field=conflict.field,
                resolved_value=policy(conflict),
                strategy=strategy
            )
            for conflict in conflicts
        ]

        logger.debug(f"Resolved {len(resolutions)} conflicts with {strategy.value}")
        return resolutions
