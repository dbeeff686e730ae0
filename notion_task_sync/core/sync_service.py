"""
同步服务主类
"""
import threading
from typing import Dict, List, Any, Optional
from datetime import datetime
from loguru import logger
import redis

from ..config.config import Config
from ..db.database import Database
from ..db.mapping_store import MappingStore
from ..db.status_tracker import SyncStatusTracker
from ..db.task_repository import TaskRepository
from ..monitor.metrics import MetricsCollector
from ..notion.client import NotionClient
from ..notion.rate_gate import RateGate
from ..notion.schema_cache import SchemaCache
from .exceptions import ConcurrentCycleRejected, MappingNotFound
from .field_mapper import FieldMapper
from .sync_worker import SyncWorker
from .types import FieldMapping, SyncCycleResult, SyncStatusRecord


class SyncService:
    """Notion 任务同步服务"""

    def __init__(self, config: Config):
        self.config = config
        self.running = False
        self._threads = []
        self._stop_event = threading.Event()

        # 初始化组件
        self._init_components()

        # 同步统计
        self.stats = {
            'cycles_applied': 0,
            'cycles_manual_pending': 0,
            'cycles_failed': 0,
            'cycles_rejected': 0,
            'start_time': None
        }

    def _init_components(self) -> None:
        """初始化组件"""
        # 验证配置
        self.config.validate()
        sync_config = self.config.sync

        # 限流闸门由所有 Notion 请求共享
        self.rate_gate = RateGate(
            max_requests_per_second=sync_config.max_requests_per_second,
            max_attempts=sync_config.max_attempts,
            initial_backoff=sync_config.initial_backoff,
            backoff_multiplier=sync_config.backoff_multiplier,
            max_backoff_delay=sync_config.max_backoff_delay
        )

        # 初始化 Notion 客户端
        self.notion_client = NotionClient(
            self.config.notion.token,
            rate_gate=self.rate_gate,
            base_url=self.config.notion.base_url,
            api_version=self.config.notion.api_version,
            timeout=self.config.notion.timeout
        )

        # 初始化数据库
        self.database = Database(self.config.database)

        # 创建同步表
        self.database.create_sync_tables()

        # 初始化Redis（可选）
        self.redis_client = None
        if sync_config.enable_cache and self.config.get('redis.host'):
            try:
                self.redis_client = redis.Redis(
                    host=self.config.get('redis.host', 'localhost'),
                    port=self.config.get('redis.port', 6379),
                    decode_responses=True
                )
                self.redis_client.ping()
                logger.info("Redis connected successfully")
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed: {e}, using memory cache")
                self.redis_client = None

        # 初始化其他组件
        self.field_mapper = FieldMapper(sync_config.default_mappings)
        self.schema_cache = SchemaCache(self.redis_client, ttl=sync_config.cache_ttl)
        self.task_repository = TaskRepository(self.database)
        self.mapping_store = MappingStore(self.database, self.field_mapper)
        self.status_tracker = SyncStatusTracker(
            self.database, running_timeout=sync_config.running_timeout
        )

        # 初始化监控
        if self.config.monitor.enable_metrics:
            self.metrics = MetricsCollector(self.config.monitor)
        else:
            self.metrics = None

        self.sync_worker = SyncWorker(
            self.notion_client,
            self.task_repository,
            self.mapping_store,
            self.status_tracker,
            self.field_mapper,
            self.schema_cache,
            metrics=self.metrics
        )

        logger.info("All components initialized successfully")

    def run_sync_cycle(self, user_id: str, database_id: str,
                       strategy: Any = None,
                       cancel_event: Optional[threading.Event] = None) -> SyncCycleResult:
        """执行一次同步周期，strategy 为空时使用映射中配置的策略"""
        with logger.contextualize(pair=f"{user_id}/{database_id}"):
            try:
                result = self.sync_worker.run_cycle(user_id, database_id, strategy, cancel_event)
            except ConcurrentCycleRejected:
                self.stats['cycles_rejected'] += 1
                raise

        self.stats[f'cycles_{result.outcome.value}'] += 1
        return result

    def save_mapping(self, user_id: str, database_id: str,
                     fields: Optional[Dict[str, str]] = None,
                     default_strategy: Optional[str] = None) -> FieldMapping:
        """保存映射；未给出字段时按数据库 schema 生成默认映射"""
        schema = self.schema_cache.get_or_load(database_id, self.notion_client.get_database)
        if fields is None:
            fields = self.field_mapper.mapping_for(database_id, schema)

        return self.mapping_store.save_mapping(
            user_id, database_id, fields,
            default_strategy or self.config.sync.default_strategy,
            schema=schema
        )

    def get_mapping(self, user_id: str, database_id: str) -> Optional[FieldMapping]:
        """读取映射"""
        return self.mapping_store.get_mapping(user_id, database_id)

    def list_mappings(self, user_id: str) -> List[FieldMapping]:
        """列出映射"""
        return self.mapping_store.list_mappings(user_id)

    def delete_mapping(self, user_id: str, database_id: str) -> None:
        """删除映射"""
        self.mapping_store.delete_mapping(user_id, database_id)

    def disconnect(self, user_id: str, database_id: str) -> None:
        """断开数据库：删除映射、状态和 schema 缓存"""
        try:
            self.mapping_store.delete_mapping(user_id, database_id)
        except MappingNotFound:
            logger.warning(f"No mapping to delete for {user_id}/{database_id}")
        self.status_tracker.delete_sync_status(user_id, database_id)
        self.schema_cache.invalidate(database_id)
        logger.info(f"Disconnected {user_id}/{database_id}")

    def get_sync_status(self, user_id: str, database_id: str) -> Optional[SyncStatusRecord]:
        """读取同步状态"""
        return self.status_tracker.get_sync_status(user_id, database_id)

    def update_sync_status(self, user_id: str, database_id: str,
                           state: Any, error: Optional[str] = None) -> SyncStatusRecord:
        """写入同步状态"""
        return self.status_tracker.update_sync_status(user_id, database_id, state, error)

    def list_sync_statuses(self, user_id: str) -> List[SyncStatusRecord]:
        """列出同步状态"""
        return self.status_tracker.list_sync_statuses(user_id)

    def get_rate_limit_stats(self) -> Dict[str, Any]:
        """获取 Notion 限流统计"""
        return self.rate_gate.get_stats()

    def test_connections(self) -> bool:
        """测试连接"""
        if not self.notion_client.test_connection():
            logger.error("Notion connection test failed")
            return False

        if not self.database.test_connection():
            logger.error("Database connection test failed")
            return False

        logger.info("All connections tested successfully")
        return True

    def start(self) -> None:
        """启动定时同步"""
        if self.running:
            logger.warning("Sync service is already running")
            return

        logger.info("Starting sync service...")
        self.running = True
        self._stop_event.clear()
        self.stats['start_time'] = datetime.now()

        if not self.test_connections():
            self.running = False
            raise RuntimeError("Connection test failed")

        sync_thread = threading.Thread(
            target=self._sync_loop,
            name="NotionSyncThread"
        )
        sync_thread.daemon = True
        sync_thread.start()
        self._threads.append(sync_thread)

        logger.info("Sync service started successfully")

    def stop(self) -> None:
        """停止同步服务，当前周期在字段之间结束"""
        logger.info("Stopping sync service...")
        self.running = False
        self._stop_event.set()

        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []

        logger.info("Sync service stopped")

    def run_all_cycles(self) -> List[SyncCycleResult]:
        """为全部映射各执行一次同步周期"""
        results = []

        for mapping in self.mapping_store.list_all_mappings():
            if self._stop_event.is_set():
                break
            try:
                results.append(self.run_sync_cycle(
                    mapping.user_id, mapping.database_id,
                    mapping.default_strategy, self._stop_event
                ))
            except ConcurrentCycleRejected:
                logger.info(f"Skip {mapping.user_id}/{mapping.database_id}, cycle already running")
            except Exception as e:
                logger.error(f"Scheduled sync failed for {mapping.user_id}/{mapping.database_id}: {e}")
                if self.metrics:
                    self.metrics.record_error('scheduled_sync', str(e))

        return results

    def _sync_loop(self) -> None:
        """定时同步循环"""
        logger.info("Notion sync loop started")

        while self.running:
            try:
                self.run_all_cycles()

                if self.metrics:
                    self.metrics.update_rate_gate_stats(self.rate_gate.get_stats())
                    self.metrics.check_and_alert()

            except Exception as e:
                logger.error(f"Error in sync loop: {e}")
                if self.metrics:
                    self.metrics.record_error('sync_loop', str(e))

            # 等待下次轮询，停止时立即返回
            self._stop_event.wait(self.config.sync.poll_interval)

    def get_status(self) -> Dict[str, Any]:
        """获取服务状态"""
        uptime = None
        if self.stats['start_time']:
            uptime = (datetime.now() - self.stats['start_time']).total_seconds()

        return {
            'running': self.running,
            'uptime_seconds': uptime,
            'sync_stats': self.stats,
            'rate_limit_stats': self.rate_gate.get_stats(),
            'threads': [
                {
                    'name': t.name,
                    'alive': t.is_alive()
                }
                for t in self._threads
            ]
        }

    def reload_config(self) -> None:
        """重新加载配置"""
        logger.info("Reloading configuration...")

        self.config.reload()

        # 更新组件配置
        self.field_mapper.default_mappings = self.config.sync.default_mappings
        self.schema_cache.ttl = self.config.sync.cache_ttl

        logger.info("Configuration reloaded")
