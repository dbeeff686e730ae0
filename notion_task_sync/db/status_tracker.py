"""
同步状态跟踪
"""
import uuid
from typing import Dict, List, Any, Optional
from datetime import timedelta
from loguru import logger

from .database import Database
from ..core.types import SyncState, SyncStatusRecord, as_utc, utcnow


class SyncStatusTracker:
    """每个 (用户, 数据库) 一行状态，覆盖写入不追加

    running 状态通过单条条件 UPDATE 进入（compare-and-set），
    多个服务实例之间也能互斥。
    """

    def __init__(self, database: Database, running_timeout: int = 1800):
        self.db = database
        self.running_timeout = running_timeout

    def get_sync_status(self, user_id: str, database_id: str) -> Optional[SyncStatusRecord]:
        """读取状态"""
        row = self.db.query_one(
            "SELECT * FROM notion_sync_status WHERE user_id = %s AND database_id = %s",
            (user_id, database_id)
        )
        return self._row_to_status(row) if row else None

    def update_sync_status(self, user_id: str, database_id: str,
                           state: Any, error: Optional[str] = None) -> SyncStatusRecord:
        """覆盖写入状态"""
        state = SyncState(state.value if isinstance(state, SyncState) else state)

        data = {
            'user_id': user_id,
            'database_id': database_id,
            'status': state.value,
            'error': error,
            'cycle_token': None
        }
        if state == SyncState.IDLE:
            data['last_synced_at'] = utcnow().replace(tzinfo=None)

        self.db.upsert('notion_sync_status', data, ['user_id', 'database_id'])
        logger.debug(f"Sync status for {user_id}/{database_id} -> {state.value}")

        return SyncStatusRecord(
            user_id=user_id,
            database_id=database_id,
            state=state,
            error=error,
            updated_at=utcnow()
        )

    def try_begin_cycle(self, user_id: str, database_id: str) -> Optional[str]:
        """尝试将状态切换为 running

        成功时返回本周期的 cycle_token，之后的心跳和收尾都凭它进行；
        已有周期在运行时返回 None。
        """
        self.db.execute(
            """
            INSERT IGNORE INTO notion_sync_status (user_id, database_id, status)
            VALUES (%s, %s, %s)
            """,
            (user_id, database_id, SyncState.IDLE.value)
        )

        # 超时未心跳的 running 视为崩溃遗留，允许接管
        cycle_token = uuid.uuid4().hex
        stale_before = (utcnow() - timedelta(seconds=self.running_timeout)).replace(tzinfo=None)
        affected = self.db.execute(
            """
            UPDATE notion_sync_status
            SET status = %s, error = NULL, cycle_token = %s, updated_at = CURRENT_TIMESTAMP(6)
            WHERE user_id = %s AND database_id = %s
            AND (status <> %s OR updated_at < %s)
            """,
            (SyncState.RUNNING.value, cycle_token, user_id, database_id,
             SyncState.RUNNING.value, stale_before)
        )
        return cycle_token if affected == 1 else None

    def heartbeat(self, user_id: str, database_id: str, cycle_token: str) -> bool:
        """刷新 running 行的 updated_at，返回锁是否仍归本周期所有"""
        affected = self.db.execute(
            """
            UPDATE notion_sync_status
            SET updated_at = CURRENT_TIMESTAMP(6)
            WHERE user_id = %s AND database_id = %s AND status = %s AND cycle_token = %s
            """,
            (user_id, database_id, SyncState.RUNNING.value, cycle_token)
        )
        return affected == 1

    def finish_cycle(self, user_id: str, database_id: str,
                     state: SyncState, error: Optional[str] = None,
                     cycle_token: Optional[str] = None) -> Optional[SyncStatusRecord]:
        """周期结束，状态回到 idle 或 error

        带 cycle_token 时只在 running 仍归本周期所有时写入，
        锁已被接管则不覆盖新周期的状态。
        """
        state = SyncState(state.value if isinstance(state, SyncState) else state)
        if state == SyncState.RUNNING:
            raise ValueError("A finished cycle cannot stay running")

        if cycle_token is None:
            return self.update_sync_status(user_id, database_id, state, error)

        assignments = ['status = %s', 'error = %s', 'cycle_token = NULL',
                       'updated_at = CURRENT_TIMESTAMP(6)']
        params: List[Any] = [state.value, error]
        if state == SyncState.IDLE:
            assignments.append('last_synced_at = %s')
            params.append(utcnow().replace(tzinfo=None))
        params.extend([user_id, database_id, SyncState.RUNNING.value, cycle_token])

        affected = self.db.execute(
            f"""
            UPDATE notion_sync_status
            SET {', '.join(assignments)}
            WHERE user_id = %s AND database_id = %s AND status = %s AND cycle_token = %s
            """,
            tuple(params)
        )
        if affected == 0:
            logger.warning(f"Running lock for {user_id}/{database_id} was taken over, "
                           f"final status {state.value} not written")
            return None

        logger.debug(f"Sync status for {user_id}/{database_id} -> {state.value}")
        return SyncStatusRecord(
            user_id=user_id,
            database_id=database_id,
            state=state,
            error=error,
            updated_at=utcnow()
        )

    def list_sync_statuses(self, user_id: str) -> List[SyncStatusRecord]:
        """列出用户全部状态"""
        rows = self.db.query(
            "SELECT * FROM notion_sync_status WHERE user_id = %s ORDER BY updated_at DESC",
            (user_id,)
        )
        return [self._row_to_status(row) for row in rows]

    def delete_sync_status(self, user_id: str, database_id: str) -> int:
        """删除状态（断开连接时）"""
        return self.db.delete(
            'notion_sync_status',
            {'user_id': user_id, 'database_id': database_id}
        )

    @staticmethod
    def _row_to_status(row: Dict[str, Any]) -> SyncStatusRecord:
        return SyncStatusRecord(
            user_id=row['user_id'],
            database_id=row['database_id'],
            state=SyncState(row['status']),
            error=row.get('error'),
            updated_at=as_utc(row.get('updated_at')),
            last_synced_at=as_utc(row.get('last_synced_at'))
        )
