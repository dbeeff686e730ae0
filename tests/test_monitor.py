"""
监控指标测试
"""
import json
import os
import shutil
import sys
import tempfile
import unittest
from unittest.mock import patch

import requests
from loguru import logger

from notion_task_sync.config.config import MonitorConfig
from notion_task_sync.core.types import ApplyReport, FieldFailure
from notion_task_sync.monitor.logger import setup_logger
from notion_task_sync.monitor.metrics import MetricsCollector


class TestMetricsCollector(unittest.TestCase):
    """指标收集器测试"""

    def setUp(self):
        self.metrics = MetricsCollector(MonitorConfig(alert_webhook='http://alerts.local/hook'))

    def test_success_rate_ignores_rejected(self):
        self.metrics.record_cycle('applied', 0.5)
        self.metrics.record_cycle('manual_pending', 0.3)
        self.metrics.record_cycle('failed', 0.1)
        self.metrics.record_cycle('rejected')

        metrics = self.metrics.get_metrics()

        self.assertEqual(metrics['cycle_counters']['total'], 4)
        self.assertEqual(metrics['success_rate'], 66.67)
        self.assertEqual(metrics['average_cycle_duration'], 0.3)

    def test_record_fields(self):
        report = ApplyReport(failures=[FieldFailure('t1', 'p1', 'status', 'remote', 'boom')])

        self.metrics.record_fields(report)

        counters = self.metrics.get_metrics()['field_counters']
        self.assertEqual(counters['remote'], {'failed': 1})
        self.assertEqual(counters['applied'], {'success': 0})

    def test_health_degraded_on_failures(self):
        self.metrics.record_cycle('failed')

        health = self.metrics.get_health_status()

        self.assertEqual(health['status'], 'degraded')
        self.assertTrue(health['issues'])

    def test_export_prometheus(self):
        self.metrics.record_cycle('applied')
        self.metrics.update_rate_gate_stats({'total_requests': 7, 'total_retries': 1})

        output = self.metrics.export_metrics('prometheus')

        self.assertIn('sync_cycles_total{outcome="applied"} 1', output)
        self.assertIn('notion_total_requests 7', output)

    def test_export_json(self):
        self.metrics.record_error('sync_cycle', 'boom')

        data = json.loads(self.metrics.export_metrics('json'))

        self.assertEqual(data['recent_errors'][0]['message'], 'boom')

    def test_export_unknown_format(self):
        with self.assertRaises(ValueError):
            self.metrics.export_metrics('xml')

    @patch('notion_task_sync.monitor.metrics.requests.post')
    def test_send_alert(self, mock_post):
        mock_post.return_value.status_code = 200

        self.metrics.send_alert('WARNING', 'degraded', {'rate': 50})

        url = mock_post.call_args[0][0]
        payload = json.loads(mock_post.call_args[1]['data'])
        self.assertEqual(url, 'http://alerts.local/hook')
        self.assertEqual(payload['type'], 'WARNING')
        self.assertEqual(payload['service'], 'notion_task_sync')

    @patch('notion_task_sync.monitor.metrics.requests.post')
    def test_send_alert_network_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError('refused')

        self.metrics.send_alert('CRITICAL', 'down')

        mock_post.assert_called_once()


class TestSetupLogger(unittest.TestCase):
    """日志配置测试"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.log_file = os.path.join(self.tmpdir, 'logs', 'notion_task_sync.log')

    def tearDown(self):
        logger.remove()
        logger.add(sys.stderr)
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_log_lines_carry_sync_pair(self):
        """测试同步周期内的日志带上用户/数据库"""
        setup_logger(MonitorConfig(log_level='DEBUG', log_file=self.log_file))

        logger.info("outside cycle")
        with logger.contextualize(pair='u1/db1'):
            logger.error("remote write failed")
        logger.remove()

        with open(self.log_file, encoding='utf-8') as f:
            lines = f.read().splitlines()
        with open(os.path.join(self.tmpdir, 'logs', 'notion_task_sync.error.log'), encoding='utf-8') as f:
            errors = f.read().splitlines()

        self.assertIn('| - |', next(line for line in lines if 'outside cycle' in line))
        self.assertIn('| u1/db1 |', next(line for line in lines if 'remote write failed' in line))
        self.assertEqual(len(errors), 1)
        self.assertIn('u1/db1', errors[0])


if __name__ == '__main__':
    unittest.main()
