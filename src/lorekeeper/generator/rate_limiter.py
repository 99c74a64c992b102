"""令牌桶限流器。"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from lorekeeper.generator.base import GeneratorAbortError

logger = logging.getLogger(__name__)


class RateLimiter:
    """异步令牌桶：容量为每分钟请求数，按 rpm/60 每秒连续回填。

    等待期间可被中止信号打断，此时抛出 GeneratorAbortError。
    """

    def __init__(
        self,
        max_requests_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute 必须 >= 1")
        self.max_requests_per_minute = max_requests_per_minute
        self._capacity = float(max_requests_per_minute)
        self._rate = max_requests_per_minute / 60.0
        self._tokens = self._capacity
        self._clock = clock
        self._updated_at = clock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated_at = now

    async def wait_for_slot(self, abort_signal: asyncio.Event | None = None) -> None:
        """阻塞直到获得一个令牌。"""
        while True:
            if abort_signal is not None and abort_signal.is_set():
                raise GeneratorAbortError("等待限流时请求被取消")
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return
            delay = (1 - self._tokens) / self._rate
            logger.debug("触发限流，等待 %.2f 秒", delay)
            if abort_signal is None:
                await asyncio.sleep(delay)
                continue
            try:
                await asyncio.wait_for(abort_signal.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
