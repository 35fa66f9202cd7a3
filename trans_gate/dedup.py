# trans_gate/dedup.py
"""
本模块实现在途请求去重：同一指纹的并发请求共享同一个 `asyncio.Task`，
因此 N 个并发的相同请求只会产生一次出站调用序列。

每个在途条目维护显式的引用计数。某个等待方被取消时只释放自己的引用，
不会影响仍在等待的其他调用方；最后一个等待方离开时，底层任务才会被取消。
任务结束（无论成功或失败）后条目立即移除，结果本身不在这里缓存。
"""

import asyncio
import threading
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class _InFlightEntry(Generic[T]):
    task: "asyncio.Task[T]"
    loop: asyncio.AbstractEventLoop
    created_at: float
    ref_count: int = 0


class InFlightRegistry:
    """按指纹登记在途任务的注册表。表的读写由线程锁保护。"""

    def __init__(
        self, max_in_flight: int = 500, clock: Callable[[], float] = time.monotonic
    ):
        if max_in_flight <= 0:
            raise ValueError("max_in_flight 必须为正数")
        self.max_in_flight = max_in_flight
        self._clock = clock
        self._entries: dict[str, _InFlightEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def ref_count(self, key: str) -> int:
        with self._lock:
            entry = self._entries.get(key)
            return entry.ref_count if entry else 0

    async def run(
        self, key: str, factory: Callable[[], Coroutine[Any, Any, T]]
    ) -> T:
        """
        执行或加入指纹为 `key` 的在途任务，并返回其结果。

        只有在没有可加入的在途任务时才会调用 `factory`。
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            entry = self._entries.get(key)
            joined = entry is not None and entry.loop is loop and not entry.task.done()
            if not joined:
                task = loop.create_task(factory())
                entry = _InFlightEntry(task=task, loop=loop, created_at=self._clock())
                self._entries[key] = entry
                task.add_done_callback(lambda _t, e=entry: self._discard(key, e))
                self._enforce_limit(keep=key)
            assert entry is not None
            entry.ref_count += 1

        if joined:
            logger.debug("加入在途请求。", key=key[:12], ref_count=entry.ref_count)
        try:
            return await asyncio.shield(entry.task)
        finally:
            self._release(key, entry)

    def _release(self, key: str, entry: _InFlightEntry) -> None:
        with self._lock:
            entry.ref_count -= 1
            abandoned = entry.ref_count <= 0 and not entry.task.done()
            if abandoned and self._entries.get(key) is entry:
                del self._entries[key]
        if abandoned:
            logger.debug("所有等待方均已取消，终止在途请求。", key=key[:12])
            entry.task.cancel()

    def _discard(self, key: str, entry: _InFlightEntry) -> None:
        with self._lock:
            if self._entries.get(key) is entry:
                del self._entries[key]

    def _enforce_limit(self, keep: str) -> None:
        """超出上限时，从表中移除最早登记的条目；其任务继续为已有等待方运行。"""
        while len(self._entries) > self.max_in_flight:
            oldest = next(k for k in self._entries if k != keep)
            del self._entries[oldest]
            logger.warning(
                "在途请求数超出上限，移除最早登记的条目。",
                max_in_flight=self.max_in_flight,
                key=oldest[:12],
            )
