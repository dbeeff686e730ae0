"""
限流闸门测试
"""
import unittest
from unittest.mock import Mock

import requests

from notion_task_sync.core.exceptions import NotionAPIError, RemoteUnavailable
from notion_task_sync.notion.rate_gate import RateGate


class FakeClock:
    """可控时钟，sleep 直接推进时间"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestRateGate(unittest.TestCase):
    """限流闸门测试"""

    def setUp(self):
        self.clock = FakeClock()
        self.gate = RateGate(
            max_requests_per_second=3,
            max_attempts=3,
            initial_backoff=1.0,
            backoff_multiplier=2.0,
            max_backoff_delay=10.0,
            clock=self.clock,
            sleep=self.clock.sleep
        )

    def test_acquire_within_limit(self):
        for _ in range(3):
            self.assertEqual(self.gate.acquire(), 0.0)
        self.assertEqual(self.clock.sleeps, [])

    def test_acquire_waits_for_window(self):
        """测试超过每秒上限时等待窗口滑出"""
        for _ in range(3):
            self.gate.acquire()

        waited = self.gate.acquire()

        self.assertEqual(waited, 1.0)
        self.assertEqual(self.clock.now, 1.0)

    def test_call_returns_result(self):
        func = Mock(return_value={'ok': True})

        self.assertEqual(self.gate.call(func, 'a', key='b'), {'ok': True})
        func.assert_called_once_with('a', key='b')

    def test_retry_after_is_honored(self):
        """测试 429 按 Retry-After 退避后重试"""
        func = Mock(side_effect=[
            NotionAPIError('rate limited', status=429, code='rate_limited', retry_after=2.0),
            'done'
        ])

        self.assertEqual(self.gate.call(func), 'done')
        self.assertEqual(self.clock.sleeps, [2.0])
        self.assertEqual(func.call_count, 2)

    def test_backoff_exhausted_raises_remote_unavailable(self):
        """测试退避次数耗尽后抛出可重试错误"""
        error = NotionAPIError('service unavailable', status=503)
        func = Mock(side_effect=error)

        with self.assertRaises(RemoteUnavailable) as ctx:
            self.gate.call(func)

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIs(ctx.exception.last_error, error)
        self.assertEqual(func.call_count, 3)
        self.assertEqual(self.clock.sleeps, [1.0, 2.0])

    def test_backoff_is_capped(self):
        error = NotionAPIError('server error', status=500)

        self.assertEqual(self.gate._backoff_delay(error, 1), 1.0)
        self.assertEqual(self.gate._backoff_delay(error, 3), 4.0)
        self.assertEqual(self.gate._backoff_delay(error, 10), 10.0)

    def test_non_retryable_error_raises_immediately(self):
        func = Mock(side_effect=NotionAPIError('bad request', status=400))

        with self.assertRaises(NotionAPIError):
            self.gate.call(func)

        self.assertEqual(func.call_count, 1)
        self.assertEqual(self.clock.sleeps, [])

    def test_retryable_errors(self):
        self.assertTrue(RateGate.is_retryable(requests.ConnectionError()))
        self.assertTrue(RateGate.is_retryable(requests.Timeout()))
        self.assertTrue(RateGate.is_retryable(NotionAPIError('x', status=502)))
        self.assertFalse(RateGate.is_retryable(NotionAPIError('x', status=404)))
        self.assertFalse(RateGate.is_retryable(ValueError()))

    def test_stats(self):
        func = Mock(side_effect=[NotionAPIError('busy', status=429), 'ok'])

        self.gate.call(func)
        stats = self.gate.get_stats()

        self.assertEqual(stats['total_requests'], 2)
        self.assertEqual(stats['total_errors'], 1)
        self.assertEqual(stats['total_retries'], 1)
        self.assertEqual(stats['requests_in_last_second'], 1)
        self.assertIsNotNone(stats['last_request_time'])


if __name__ == '__main__':
    unittest.main()
