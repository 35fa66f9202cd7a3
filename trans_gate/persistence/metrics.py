# trans_gate/persistence/metrics.py
"""
指标持久化服务。

在单写者锁的保护下，按固定间隔把 API 监控的快照批量写入数据库：

- `start()` 先原子地创建服务锁；锁被其他实例持有时返回 False，且不做任何写入。
- 每个周期把快照与此前未写成功的记录合并为一批写入（重复即跳过）。
- 连续失败达到 `max_retries` 次后，把挂起的记录转储为本地 JSONL 文件；
  只有转储或写入成功后，挂起记录才会被清空。
- `stop()` 先冲刷挂起记录，再释放锁。
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

import structlog
from pydantic import BaseModel

from trans_gate.config import PersistenceConfig
from trans_gate.exceptions import LockConflictError, PersistenceError
from trans_gate.monitoring import ApiMonitor, OperationMetrics, get_default_monitor
from trans_gate.persistence.store import LockRecord, MetricRecord, MetricsStore

logger = structlog.get_logger(__name__)

MIN_LOCK_REFRESH_SECONDS = 10.0


class FlushResult(BaseModel):
    success: bool
    count: int = 0
    error: str | None = None


class MetricsPersistence:
    def __init__(
        self,
        store: MetricsStore,
        config: PersistenceConfig | None = None,
        monitor: ApiMonitor | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or PersistenceConfig()
        self.monitor = monitor or get_default_monitor()
        self._clock = clock

        self.pending_records: list[MetricRecord] = []
        self.retry_count = 0
        self.is_running = False
        self.lock_held = False

        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._log = logger.bind(
            service=self.config.service_name, instance_id=self.config.instance_id
        )

    @property
    def instance_id(self) -> str:
        return self.config.instance_id

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ---------- 生命周期 ----------

    async def start(self) -> bool:
        if self.is_running:
            self._log.warning("指标持久化服务已在运行。")
            return False
        if not await self.acquire_lock():
            self._log.info("未获取服务锁，跳过启动。")
            return False

        self.is_running = True
        self._stop_event.clear()
        await self.persist_safe()
        self._loop_task = asyncio.create_task(
            self._run_loop(), name="metrics-persistence-loop"
        )
        self._log.info("指标持久化服务已启动。", interval_ms=self.config.interval_ms)
        return True

    async def stop(self) -> None:
        self._stop_event.set()
        tasks = [t for t in (self._loop_task, self._refresh_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._refresh_task = None

        if self.is_running:
            result = await self.flush()
            if not result.success:
                await self.dump_pending_records()
            await self.release_lock()
            self._log.info("指标持久化服务已停止。")
        self.is_running = False

    async def _run_loop(self) -> None:
        interval = self.config.interval_ms / 1000
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.persist_safe()

    # ---------- 写入 ----------

    def build_records(self) -> list[MetricRecord]:
        """把当前监控快照转换为持久化记录；没有样本的操作会被跳过。"""
        snapshot = self.monitor.get_api_metrics()
        metrics: list[OperationMetrics] = snapshot if isinstance(snapshot, list) else []
        timestamp = self._now_ms()
        return [
            MetricRecord(
                operation=m.operation,
                timestamp=timestamp,
                success=m.totals.success,
                failure=m.totals.failure,
                success_rate=m.totals.success_rate,
                failure_rate=m.totals.failure_rate,
                p95=m.p95_duration,
                instance_id=self.instance_id,
            )
            for m in metrics
            if m.totals.total > 0
        ]

    async def persist(self) -> None:
        """写入一批记录；失败时整批保留在 `pending_records` 中并抛出 `PersistenceError`。"""
        if not self.lock_held:
            self._log.warning("服务锁已丢失，跳过本次写入。")
            return
        records = self.build_records()
        if not records and not self.pending_records:
            self._log.debug("指标为空，跳过本次写入。")
            return

        payload = [*self.pending_records, *records]
        try:
            await self.store.insert_many(payload)
        except PersistenceError:
            self.pending_records = payload
            raise
        if self.pending_records:
            self._log.info("已写入此前挂起的记录。", count=len(payload))
        self.pending_records = []

    async def persist_safe(self) -> None:
        try:
            await self.persist()
            self.retry_count = 0
        except PersistenceError as e:
            self.retry_count += 1
            self._log.error(
                "指标写入失败。",
                error=str(e),
                retry_count=self.retry_count,
                max_retries=self.config.max_retries,
            )
            if self.retry_count >= self.config.max_retries:
                if await self.dump_pending_records() is not None:
                    self.retry_count = 0

    async def flush(self) -> FlushResult:
        """按需冲刷挂起记录。"""
        if not self.pending_records:
            return FlushResult(success=True, count=0)
        try:
            await self.store.insert_many(self.pending_records)
        except PersistenceError as e:
            self._log.error("冲刷挂起记录失败。", error=str(e))
            return FlushResult(success=False, error=str(e))
        count = len(self.pending_records)
        self.pending_records = []
        self.retry_count = 0
        return FlushResult(success=True, count=count)

    async def dump_pending_records(self) -> Path | None:
        """把挂起记录写入本地 JSONL 文件，成功后清空并返回文件路径。"""
        if not self.pending_records:
            return None
        dump_dir = Path(self.config.dump_dir)
        path = dump_dir / f"metrics_dump_{self._now_ms()}.jsonl"
        content = "\n".join(r.model_dump_json() for r in self.pending_records) + "\n"

        def _write() -> None:
            dump_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            self._log.error("转储挂起记录失败。", error=str(e), path=str(path))
            return None
        self._log.error(
            "持久化失败，挂起记录已转储到本地文件。",
            count=len(self.pending_records),
            path=str(path),
        )
        self.pending_records = []
        return path

    async def collect_metric(
        self,
        operation: str,
        *,
        success: bool = True,
        duration: float | None = None,
        timestamp_ms: int | None = None,
    ) -> bool:
        """绕过周期任务，直接写入单条指标。失败只记录日志并返回 False。"""
        if not operation:
            raise ValueError("operation 不能为空")
        record = MetricRecord(
            operation=operation,
            timestamp=timestamp_ms if timestamp_ms is not None else self._now_ms(),
            success=1 if success else 0,
            failure=0 if success else 1,
            success_rate=1.0 if success else 0.0,
            failure_rate=0.0 if success else 1.0,
            p95=duration or 0.0,
            instance_id=self.instance_id,
        )
        try:
            await self.store.insert_one(record)
        except PersistenceError as e:
            self._log.warning("单条指标写入失败。", operation=operation, error=str(e))
            return False
        return True

    # ---------- 服务锁 ----------

    async def acquire_lock(self) -> bool:
        service = self.config.service_name
        now = self._now_ms()
        try:
            removed = await self.store.delete_stale_locks(
                service, now - self.config.lock_timeout_ms
            )
            if removed:
                self._log.warning("已清理过期的服务锁。", removed=removed)
        except PersistenceError as e:
            self._log.warning("清理过期服务锁失败。", error=str(e))

        try:
            try:
                await self.store.create_lock(
                    LockRecord(service=service, instance_id=self.instance_id, acquired_at=now)
                )
            except LockConflictError:
                existing = await self.store.get_lock(service)
                if existing is None or existing.instance_id != self.instance_id:
                    self._log.info(
                        "服务锁已被其他实例持有。",
                        holder=existing.instance_id if existing else None,
                    )
                    return False
                await self.store.refresh_lock(service, self.instance_id, now)
                self._log.info("重新获取本实例持有的服务锁。")
        except PersistenceError as e:
            self._log.error("获取服务锁失败。", error=str(e))
            return False

        self.lock_held = True
        self._ensure_lock_refresh()
        return True

    def _ensure_lock_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.create_task(
            self._refresh_loop(), name="metrics-persistence-lock-refresh"
        )

    async def _refresh_loop(self) -> None:
        interval = max(MIN_LOCK_REFRESH_SECONDS, self.config.lock_timeout_ms / 2000)
        while not self._stop_event.is_set() and self.lock_held:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.refresh_lock()

    async def refresh_lock(self) -> bool:
        try:
            refreshed = await self.store.refresh_lock(
                self.config.service_name, self.instance_id, self._now_ms()
            )
        except PersistenceError as e:
            self._log.warning("刷新服务锁失败。", error=str(e))
            return False
        if not refreshed:
            self._log.warning("服务锁已被其他实例接管，停止写入。")
            self.lock_held = False
        return refreshed

    async def release_lock(self) -> None:
        if not self.lock_held:
            return
        try:
            await self.store.delete_lock(self.config.service_name, self.instance_id)
        except PersistenceError as e:
            self._log.warning("释放服务锁失败。", error=str(e))
        finally:
            self.lock_held = False
