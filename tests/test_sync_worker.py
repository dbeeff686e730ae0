"""
同步周期测试
"""
import threading
import unittest
from unittest.mock import Mock

from notion_task_sync.core.conflict_detector import ConflictDetector
from notion_task_sync.core.exceptions import (
    ConcurrentCycleRejected, MappingNotFound, NotionAPIError, RemoteUnavailable
)
from notion_task_sync.core.field_mapper import FieldMapper
from notion_task_sync.core.sync_worker import SyncWorker
from notion_task_sync.core.types import (
    ResolutionStrategy, SyncOutcome, SyncState, SyncStatusRecord
)
from notion_task_sync.notion.schema_cache import SchemaCache

from tests.fakes import (
    NOW, YESTERDAY, FakeMappingStore, FakeNotion, FakeStatusTracker, FakeTaskStore,
    make_mapping, make_page, make_task
)


class TestSyncWorker(unittest.TestCase):
    """同步工作器测试"""

    def setUp(self):
        self.tasks = FakeTaskStore([make_task(title='Draft', updated_at=NOW, last_synced_at=YESTERDAY)])
        self.notion = FakeNotion([make_page(title='Final', last_edited_time=YESTERDAY)])
        self.mappings = FakeMappingStore([make_mapping()])
        self.status = FakeStatusTracker()
        self.metrics = Mock()
        self.worker = SyncWorker(
            self.notion, self.tasks, self.mappings, self.status,
            FieldMapper(), SchemaCache(None), metrics=self.metrics
        )

    def test_latest_wins_prefers_newer_local(self):
        """测试本地较新时 latest-wins 取本地值并写回 Notion"""
        result = self.worker.run_cycle('u1', 'db1', 'latest-wins')

        self.assertEqual(result.outcome, SyncOutcome.APPLIED)
        self.assertEqual(result.status, SyncState.IDLE)
        self.assertEqual(result.applied_count, 1)

        task = self.tasks.get_task('u1', 't1')
        self.assertEqual(task.get('title'), 'Draft')
        self.assertGreater(task.last_synced_at, YESTERDAY)
        self.assertEqual(self.notion.pages['p1'].properties['title'], 'Draft')
        self.assertEqual(self.status.history[-1], (SyncState.IDLE, None))

    def test_manual_returns_conflict_without_writes(self):
        """测试 manual 策略只返回冲突"""
        result = self.worker.run_cycle('u1', 'db1', 'manual')

        self.assertEqual(result.outcome, SyncOutcome.MANUAL_PENDING)
        self.assertEqual([c.field for c in result.manual_conflicts], ['title'])
        self.assertEqual(result.manual_conflicts[0].local_value, 'Draft')
        self.assertEqual(result.manual_conflicts[0].remote_value, 'Final')
        self.assertEqual(self.tasks.writes, [])
        self.assertEqual(self.notion.writes, [])
        self.assertEqual(self.status.get_sync_status('u1', 'db1').state, SyncState.IDLE)

    def test_remote_failure_is_redetected_next_cycle(self):
        """测试 Notion 写入失败后下个周期重新检测并解决"""
        self.tasks.tasks['t1'].values.update(title='Final', status='Done')
        self.notion.fail_properties = {'st%3A'}

        result = self.worker.run_cycle('u1', 'db1', 'local-wins')

        self.assertEqual(result.outcome, SyncOutcome.FAILED)
        self.assertEqual(result.status, SyncState.ERROR)
        self.assertEqual([(f.field, f.stage) for f in result.failures], [('status', 'remote')])
        self.assertIn('status', result.error)
        self.assertIn('0 fields applied', result.error)
        self.assertEqual(self.tasks.get_task('u1', 't1').get('status'), 'Done')
        self.assertEqual(self.status.get_sync_status('u1', 'db1').state, SyncState.ERROR)

        conflicts = ConflictDetector(FieldMapper()).detect(
            self.tasks.get_task('u1', 't1'),
            self.notion.fetch_page('p1'),
            self.mappings.get_mapping('u1', 'db1')
        )
        self.assertEqual([c.field for c in conflicts], ['status'])

        self.notion.fail_properties = set()
        result = self.worker.run_cycle('u1', 'db1', 'local-wins')

        self.assertEqual(result.outcome, SyncOutcome.APPLIED)
        self.assertEqual(result.applied_count, 1)
        self.assertEqual(self.notion.pages['p1'].properties['st%3A'], 'Done')

    def test_missing_mapping_aborts_before_running(self):
        with self.assertRaises(MappingNotFound):
            self.worker.run_cycle('u1', 'unknown-db')

        self.assertEqual(self.status.history, [])
        self.assertEqual(self.tasks.writes, [])

    def test_running_cycle_rejects_second(self):
        self.status.records[('u1', 'db1')] = SyncStatusRecord('u1', 'db1', SyncState.RUNNING)

        with self.assertRaises(ConcurrentCycleRejected):
            self.worker.run_cycle('u1', 'db1', 'latest-wins')

        self.assertEqual(self.tasks.writes, [])
        self.metrics.record_cycle.assert_called_once_with('rejected')

    def test_concurrent_cycles_only_one_runs(self):
        """测试同一 (用户, 数据库) 并发启动时只有一个周期运行"""
        entered = threading.Event()
        release = threading.Event()

        def block(page_id):
            entered.set()
            release.wait(5)

        self.notion.fetch_hook = block
        results = []
        worker_thread = threading.Thread(
            target=lambda: results.append(self.worker.run_cycle('u1', 'db1', 'latest-wins'))
        )
        worker_thread.start()

        try:
            self.assertTrue(entered.wait(5))
            with self.assertRaises(ConcurrentCycleRejected):
                self.worker.run_cycle('u1', 'db1', 'latest-wins')
        finally:
            release.set()
            worker_thread.join(5)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].outcome, SyncOutcome.APPLIED)
        self.assertEqual(len(self.notion.writes), 1)

    def test_taken_over_cycle_stops_and_keeps_new_owner(self):
        """测试锁被接管后停止写入，且不覆盖新周期的 running"""
        self.tasks.tasks['t2'] = make_task('t2', 'p2', title='Draft 2',
                                           updated_at=NOW, last_synced_at=YESTERDAY)
        self.notion.pages['p2'] = make_page('p2', title='Final 2', last_edited_time=YESTERDAY)

        def take_over(page_id):
            if page_id == 'p1':
                self.status.take_over('u1', 'db1')

        self.notion.fetch_hook = take_over

        result = self.worker.run_cycle('u1', 'db1', 'latest-wins')

        self.assertEqual(result.outcome, SyncOutcome.FAILED)
        self.assertIn('Running lock taken over', result.error)
        self.assertEqual(self.status.heartbeats, 2)
        self.assertEqual([page_id for page_id, _ in self.notion.writes], ['p1'])
        self.assertEqual(self.tasks.get_task('u1', 't2').get('title'), 'Draft 2')
        self.assertEqual(self.status.get_sync_status('u1', 'db1').state, SyncState.RUNNING)

    def test_other_pairs_are_independent(self):
        self.status.records[('u1', 'db2')] = SyncStatusRecord('u1', 'db2', SyncState.RUNNING)

        result = self.worker.run_cycle('u1', 'db1', 'latest-wins')

        self.assertEqual(result.outcome, SyncOutcome.APPLIED)

    def test_first_sync_adopts_remote(self):
        """测试首次同步时本地采用 Notion 取值"""
        self.tasks.tasks['t1'].last_synced_at = None
        self.notion.pages['p1'].properties['pr%40'] = 3

        result = self.worker.run_cycle('u1', 'db1', 'local-wins')

        task = self.tasks.get_task('u1', 't1')
        self.assertEqual(result.seeded_count, 1)
        self.assertEqual(result.applied_count, 0)
        self.assertEqual(task.get('title'), 'Final')
        self.assertEqual(task.get('priority'), 'high')
        self.assertIsNotNone(task.last_synced_at)
        self.assertEqual(self.notion.writes, [])

    def test_default_strategy_from_mapping(self):
        self.mappings.mappings[('u1', 'db1')].default_strategy = 'local-wins'
        self.tasks.tasks['t1'].updated_at = YESTERDAY
        self.notion.pages['p1'].last_edited_time = NOW

        result = self.worker.run_cycle('u1', 'db1')

        self.assertEqual(result.strategy, ResolutionStrategy.LOCAL_WINS)
        self.assertEqual(self.notion.pages['p1'].properties['title'], 'Draft')

    def test_page_fetch_failure_is_reported(self):
        self.notion.fetch_errors['p1'] = NotionAPIError('Could not find page', status=404)

        result = self.worker.run_cycle('u1', 'db1', 'latest-wins')

        self.assertEqual(result.outcome, SyncOutcome.FAILED)
        self.assertEqual(result.failures[0].stage, 'fetch')
        self.assertEqual(self.status.get_sync_status('u1', 'db1').state, SyncState.ERROR)

    def test_remote_unavailable_sets_error(self):
        """测试退避耗尽后周期以 error 结束"""
        self.notion.fetch_errors['p1'] = RemoteUnavailable('Notion API unavailable', attempts=5)

        result = self.worker.run_cycle('u1', 'db1', 'latest-wins')

        self.assertEqual(result.outcome, SyncOutcome.FAILED)
        self.assertIn('Notion API unavailable', result.error)
        record = self.status.get_sync_status('u1', 'db1')
        self.assertEqual(record.state, SyncState.ERROR)
        self.assertIn('0 fields applied', record.error)

    def test_cancelled_cycle_reports_applied_count(self):
        cancel = threading.Event()
        cancel.set()

        result = self.worker.run_cycle('u1', 'db1', 'latest-wins', cancel_event=cancel)

        self.assertEqual(result.outcome, SyncOutcome.FAILED)
        self.assertEqual(result.error, 'Cancelled after 0 fields applied')
        self.assertEqual(self.notion.writes, [])

    def test_unexpected_error_sets_status_and_raises(self):
        self.tasks.list_linked_tasks = Mock(side_effect=RuntimeError('connection lost'))

        with self.assertRaises(RuntimeError):
            self.worker.run_cycle('u1', 'db1', 'latest-wins')

        record = self.status.get_sync_status('u1', 'db1')
        self.assertEqual(record.state, SyncState.ERROR)
        self.assertIn('connection lost', record.error)

    def test_metrics_recorded(self):
        self.worker.run_cycle('u1', 'db1', 'latest-wins')

        outcome, duration = self.metrics.record_cycle.call_args[0]
        self.assertEqual(outcome, 'applied')
        self.assertGreaterEqual(duration, 0)
        self.metrics.record_fields.assert_called_once()


if __name__ == '__main__':
    unittest.main()
