# trans_gate/cache.py
"""本模块提供翻译结果的内存缓存，以及缓存与去重共用的请求指纹。"""

import hashlib
import json
import threading
import time
from collections.abc import Callable
from typing import Any

from cachetools import TTLCache
from pydantic import BaseModel

from trans_gate.types import TranslationRequest, TranslationResult


def fingerprint(request: TranslationRequest, strategy: str | None = None) -> str:
    """为请求生成确定性的指纹，原文不会以明文出现在键中。"""
    payload = json.dumps(
        {
            "text": request.text,
            "target": request.target_language,
            "system_prompt": request.system_prompt,
            "strategy": strategy,
            "extras": request.extras,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


class CacheStats(BaseModel):
    hits: int
    misses: int
    size: int
    max_entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ResultCache:
    """
    一个线程安全的 TTL 缓存。

    过期条目在读取时惰性淘汰，`sweep()` 可由定时任务调用以主动清理；
    条目数超出上限时，最久未被访问的条目最先被淘汰。
    """

    def __init__(
        self,
        ttl: float = 3600,
        max_entries: int = 1000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self._timer = timer
        self._cache: TTLCache[str, TranslationResult] = TTLCache(
            maxsize=max_entries, ttl=ttl, timer=timer
        )
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> TranslationResult | None:
        with self._lock:
            result = self._cache.get(key)
            if result is None:
                self._misses += 1
            else:
                self._hits += 1
            return result

    def set(self, key: str, result: TranslationResult) -> None:
        with self._lock:
            self._cache[key] = result

    def sweep(self) -> int:
        """主动清理过期条目，返回清理的数量。"""
        with self._lock:
            before = len(self._cache)
            self._cache.expire()
            return before - len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._cache),
                max_entries=self.max_entries,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            return key in self._cache
