"""
同步服务测试
"""
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import Mock, patch

from notion_task_sync.config.config import Config
from notion_task_sync.core.exceptions import ConcurrentCycleRejected
from notion_task_sync.core.sync_service import SyncService
from notion_task_sync.core.types import SyncCycleResult, SyncOutcome, SyncState, ResolutionStrategy

from tests.fakes import SCHEMA, make_mapping


class TestSyncService(unittest.TestCase):
    """同步服务测试"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        path = os.path.join(self.tmpdir, 'config.json')
        with open(path, 'w', encoding='utf-8') as f:
            json.dump({
                'database': {'host': 'localhost', 'database': 'tasks'},
                'notion': {'token': 'secret'},
                'sync': {'poll_interval': 1}
            }, f)
        self.config = Config(path)

        db_patch = patch('notion_task_sync.core.sync_service.Database')
        notion_patch = patch('notion_task_sync.core.sync_service.NotionClient')
        self.Database = db_patch.start()
        self.NotionClient = notion_patch.start()
        self.addCleanup(db_patch.stop)
        self.addCleanup(notion_patch.stop)

        self.db = self.Database.return_value
        self.notion = self.NotionClient.return_value
        self.notion.get_database.return_value = SCHEMA

        self.service = SyncService(self.config)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_components_initialized(self):
        self.db.create_sync_tables.assert_called_once()
        self.assertIsNone(self.service.redis_client)
        self.assertIs(self.NotionClient.call_args[1]['rate_gate'], self.service.rate_gate)
        self.assertIsNotNone(self.service.metrics)

    def test_save_mapping_generates_default(self):
        """测试未给出字段时按 schema 生成映射"""
        mapping = self.service.save_mapping('u1', 'db1')

        self.assertEqual(mapping.fields['title'], 'title')
        self.assertEqual(mapping.fields['status'], 'st%3A')
        self.assertEqual(mapping.default_strategy, 'remote-wins')
        self.db.upsert.assert_called_once()
        self.notion.get_database.assert_called_once_with('db1')

    def test_run_sync_cycle_counts_outcomes(self):
        result = SyncCycleResult('u1', 'db1', ResolutionStrategy.REMOTE_WINS,
                                 SyncOutcome.APPLIED, SyncState.IDLE)
        self.service.sync_worker = Mock()
        self.service.sync_worker.run_cycle.return_value = result

        self.assertIs(self.service.run_sync_cycle('u1', 'db1', 'remote-wins'), result)
        self.assertEqual(self.service.stats['cycles_applied'], 1)

        self.service.sync_worker.run_cycle.side_effect = ConcurrentCycleRejected('u1', 'db1')
        with self.assertRaises(ConcurrentCycleRejected):
            self.service.run_sync_cycle('u1', 'db1')
        self.assertEqual(self.service.stats['cycles_rejected'], 1)

    def test_run_all_cycles_skips_rejected(self):
        """测试定时同步跳过正在运行的映射"""
        self.service.mapping_store = Mock()
        self.service.mapping_store.list_all_mappings.return_value = [
            make_mapping('u1', 'db1'), make_mapping('u2', 'db2')
        ]
        result = SyncCycleResult('u2', 'db2', ResolutionStrategy.REMOTE_WINS,
                                 SyncOutcome.APPLIED, SyncState.IDLE)
        self.service.sync_worker = Mock()
        self.service.sync_worker.run_cycle.side_effect = [
            ConcurrentCycleRejected('u1', 'db1'), result
        ]

        self.assertEqual(self.service.run_all_cycles(), [result])

    def test_disconnect(self):
        self.db.delete.return_value = 0
        self.service.schema_cache.set('db1', SCHEMA)

        self.service.disconnect('u1', 'db1')

        tables = [c[0][0] for c in self.db.delete.call_args_list]
        self.assertEqual(tables, ['notion_schema_mapping', 'notion_sync_status'])
        self.assertIsNone(self.service.schema_cache.get('db1'))

    def test_start_and_stop(self):
        self.notion.test_connection.return_value = True
        self.db.test_connection.return_value = True
        self.service.mapping_store = Mock()
        self.service.mapping_store.list_all_mappings.return_value = []

        self.service.start()
        self.assertTrue(self.service.get_status()['running'])

        self.service.stop()
        status = self.service.get_status()
        self.assertFalse(status['running'])
        self.assertEqual(status['threads'], [])

    def test_start_fails_without_connection(self):
        self.notion.test_connection.return_value = False

        with self.assertRaises(RuntimeError):
            self.service.start()
        self.assertFalse(self.service.running)

    def test_rate_limit_stats(self):
        stats = self.service.get_rate_limit_stats()

        self.assertEqual(stats['total_requests'], 0)
        self.assertIn('average_wait_time', stats)


if __name__ == '__main__':
    unittest.main()
