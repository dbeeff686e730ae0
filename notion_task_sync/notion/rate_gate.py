"""
Notion API 限流闸门
"""
import time
from collections import deque
from threading import Lock
from typing import Any, Callable, Dict, Optional

import requests
from loguru import logger

from ..core.exceptions import NotionAPIError, RemoteUnavailable


class RateGate:
    """线程安全的限流器：每秒请求数上限 + 有限次退避重试

    Notion 对每个集成限制约每秒 3 个请求，遇到 429 时按 Retry-After 退避。
    退避对所有调用方生效（请求级），超过次数后抛出 RemoteUnavailable。
    """

    def __init__(self, max_requests_per_second: int = 3,
                 max_attempts: int = 5,
                 initial_backoff: float = 1.0,
                 backoff_multiplier: float = 2.0,
                 max_backoff_delay: float = 10.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_requests_per_second = max_requests_per_second
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.backoff_multiplier = backoff_multiplier
        self.max_backoff_delay = max_backoff_delay
        self._clock = clock
        self._sleep = sleep

        self._lock = Lock()
        self._request_times: deque = deque()
        self._blocked_until = 0.0

        self.total_requests = 0
        self.total_errors = 0
        self.total_retries = 0
        self.average_wait_time = 0.0
        self.last_request_time: Optional[float] = None

    def _cleanup(self, now: float) -> None:
        while self._request_times and self._request_times[0] <= now - 1.0:
            self._request_times.popleft()

    def acquire(self) -> float:
        """获取一个请求名额，必要时阻塞，返回等待秒数"""
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                self._cleanup(now)

                if now < self._blocked_until:
                    wait = self._blocked_until - now
                elif len(self._request_times) < self.max_requests_per_second:
                    self._request_times.append(now)
                    self.total_requests += 1
                    self.last_request_time = time.time()
                    # 指数滑动平均
                    self.average_wait_time = self.average_wait_time * 0.9 + waited * 0.1
                    return waited
                else:
                    wait = 1.0 - (now - self._request_times[0])

            wait = max(wait, 0.01)
            self._sleep(wait)
            waited += wait

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """经过闸门执行一次远端调用"""
        attempt = 0
        while True:
            attempt += 1
            self.acquire()
            try:
                return func(*args, **kwargs)
            except Exception as e:
                with self._lock:
                    self.total_errors += 1

                if not self.is_retryable(e):
                    raise

                if attempt >= self.max_attempts:
                    logger.error(f"Remote call failed after {attempt} attempts: {e}")
                    raise RemoteUnavailable(
                        f"Notion API unavailable after {attempt} attempts: {e}",
                        attempts=attempt,
                        last_error=e
                    ) from e

                delay = self._backoff_delay(e, attempt)
                with self._lock:
                    self.total_retries += 1
                    self._blocked_until = max(self._blocked_until, self._clock() + delay)

                logger.warning(f"Rate limited or transient error ({e}), "
                               f"backing off {delay:.2f}s (attempt {attempt}/{self.max_attempts})")

    def _backoff_delay(self, error: Exception, attempt: int) -> float:
        base = getattr(error, 'retry_after', None) or self.initial_backoff
        delay = base * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff_delay)

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        if isinstance(error, NotionAPIError):
            return error.retryable
        return isinstance(error, (requests.ConnectionError, requests.Timeout))

    def get_stats(self) -> Dict[str, Any]:
        """获取累计使用统计"""
        with self._lock:
            self._cleanup(self._clock())
            return {
                'requests_in_last_second': len(self._request_times),
                'total_requests': self.total_requests,
                'total_errors': self.total_errors,
                'total_retries': self.total_retries,
                'average_wait_time': round(self.average_wait_time, 3),
                'last_request_time': self.last_request_time
            }
