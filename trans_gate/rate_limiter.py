# trans_gate/rate_limiter.py
"""本模块提供一个基于令牌桶算法的异步速率限制器，用于约束对远端端点的调用频率。"""

import asyncio
import time
from typing import Callable


class RateLimiter:
    """一个异步安全的令牌桶（Token Bucket）速率限制器。"""

    def __init__(
        self,
        refill_rate: float,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if refill_rate <= 0 or capacity <= 0:
            raise ValueError("速率和容量必须为正数")
        self.refill_rate = refill_rate
        self.capacity = capacity
        self.tokens = capacity
        self._clock = clock
        self.last_refill_time = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def from_limits(cls, rpm: int | None, rps: int | None) -> "RateLimiter | None":
        """根据 rpm/rps 配置构造限流器；两者都未配置时返回 None。rps 优先。"""
        if rps:
            return cls(refill_rate=float(rps), capacity=float(rps))
        if rpm:
            return cls(refill_rate=rpm / 60.0, capacity=float(rpm))
        return None

    def _refill(self) -> None:
        """[私有] 根据流逝的时间补充令牌。"""
        now = self._clock()
        elapsed = now - self.last_refill_time
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
            self.last_refill_time = now

    async def acquire(self, tokens_needed: int = 1) -> None:
        """异步获取指定数量的令牌，如果令牌不足则等待。"""
        if tokens_needed > self.capacity:
            raise ValueError("请求的令牌数不能超过桶的容量")

        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= tokens_needed:
                    self.tokens -= tokens_needed
                    return
                wait_time = (tokens_needed - self.tokens) / self.refill_rate

            # 在锁外等待，其他协程可以并发计算各自的等待时间
            await asyncio.sleep(wait_time)
