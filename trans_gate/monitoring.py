# trans_gate/monitoring.py
"""
API 可用性监控与告警。

每次远端调用尝试都以 `MetricSample` 的形式记录到按操作划分的内存环形缓冲中。
`record_api_call` 只追加样本，不做任何 I/O；读取接口在每次调用时根据原始样本
重新计算 1m/5m/15m 滚动窗口的分位数与状态码分布，并据此评估告警级别。

失败率告警基于 5m 窗口；延迟告警比较 5m 窗口的 p95 与 15m 窗口的 p95（基线）。
告警级别发生变化时会记录一条日志。

模块级函数操作一个进程内共享的默认实例；需要隔离的调用方可以自行构造 `ApiMonitor`。
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from trans_gate.config import MonitorConfig
from trans_gate.types import MetricSample

logger = structlog.get_logger(__name__)

AlertLevel = Literal["none", "warn", "error"]

WINDOWS: dict[str, float] = {"1m": 60.0, "5m": 300.0, "15m": 900.0}
_LARGEST_WINDOW = max(WINDOWS.values())
_SEVERITY = {"none": 0, "warn": 1, "error": 2}


class WindowStats(BaseModel):
    name: str
    window_seconds: float
    sample_size: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    average_duration: float = 0.0
    p50_duration: float = 0.0
    p90_duration: float = 0.0
    p95_duration: float = 0.0
    p99_duration: float = 0.0
    status_counts: dict[str, int] = Field(default_factory=dict)


class Totals(BaseModel):
    total: int = 0
    success: int = 0
    failure: int = 0

    @property
    def success_rate(self) -> float:
        return self.success / self.total if self.total else 0.0

    @property
    def failure_rate(self) -> float:
        return self.failure / self.total if self.total else 0.0


class AlertLevels(BaseModel):
    failure: AlertLevel = "none"
    latency: AlertLevel = "none"


class AlertState(BaseModel):
    operation: str
    alerts: AlertLevels
    last_updated: float | None = None

    @property
    def level(self) -> AlertLevel:
        """两类告警中较高的级别。"""
        return max(self.alerts.failure, self.alerts.latency, key=_SEVERITY.__getitem__)


class OperationMetrics(BaseModel):
    operation: str
    totals: Totals
    windows: dict[str, WindowStats]
    alerts: AlertLevels
    last_updated: float | None = None

    @property
    def p95_duration(self) -> float:
        """5m 窗口的 p95，持久化与 CLI 展示使用该值。"""
        return self.windows["5m"].p95_duration


def pick_quantile(sorted_values: list[float], quantile: float) -> float:
    if not sorted_values:
        return 0.0
    index = math.ceil(len(sorted_values) * quantile) - 1
    return sorted_values[min(len(sorted_values) - 1, max(0, index))]


def window_stats(name: str, samples: Iterable[MetricSample], now: float) -> WindowStats:
    span = WINDOWS[name]
    cutoff = now - span
    selected = [s for s in samples if s.timestamp >= cutoff]
    stats = WindowStats(name=name, window_seconds=span, sample_size=len(selected))
    if not selected:
        return stats

    successes = sum(1 for s in selected if s.success)
    durations = sorted(s.duration for s in selected if s.duration is not None)
    status_counts: dict[str, int] = {}
    for s in selected:
        key = str(s.status_code if s.status_code is not None else 0)
        status_counts[key] = status_counts.get(key, 0) + 1

    stats.success_rate = successes / len(selected)
    stats.failure_rate = 1 - stats.success_rate
    stats.average_duration = sum(durations) / len(durations) if durations else 0.0
    stats.p50_duration = pick_quantile(durations, 0.5)
    stats.p90_duration = pick_quantile(durations, 0.9)
    stats.p95_duration = pick_quantile(durations, 0.95)
    stats.p99_duration = pick_quantile(durations, 0.99)
    stats.status_counts = status_counts
    return stats


class _OperationRing:
    def __init__(self, maxlen: int):
        self.samples: deque[MetricSample] = deque(maxlen=maxlen)
        self.totals = Totals()
        self.alerts = AlertLevels()
        self.last_updated: float | None = None

    def prune(self, now: float) -> None:
        cutoff = now - _LARGEST_WINDOW
        while self.samples and self.samples[0].timestamp < cutoff:
            self.samples.popleft()


class ApiMonitor:
    """按操作维护滚动窗口统计与告警状态。"""

    def __init__(
        self,
        config: MonitorConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or MonitorConfig()
        self._clock = clock
        self._rings: dict[str, _OperationRing] = {}
        self._lock = threading.Lock()

    # ---------- 写入 ----------

    def record_api_call(self, sample: MetricSample) -> None:
        """追加一个样本。同步、无 I/O，不会阻塞调用方。"""
        if not self.config.enabled or not sample.operation:
            return
        with self._lock:
            ring = self._rings.get(sample.operation)
            if ring is None:
                ring = _OperationRing(self.config.max_samples_per_operation)
                self._rings[sample.operation] = ring
            ring.samples.append(sample)
            ring.totals.total += 1
            if sample.success:
                ring.totals.success += 1
            else:
                ring.totals.failure += 1
            ring.last_updated = sample.timestamp
            ring.prune(self._clock())

    # ---------- 读取 ----------

    def get_api_metrics(
        self, operation: str | None = None
    ) -> OperationMetrics | list[OperationMetrics] | None:
        """给定操作时返回该操作的指标（未知操作返回 None），否则返回全部操作的指标。"""
        self._evaluate_all()
        with self._lock:
            now = self._clock()
            if operation is not None:
                ring = self._rings.get(operation)
                return self._metrics_of(operation, ring, now) if ring else None
            return [self._metrics_of(op, r, now) for op, r in self._rings.items()]

    def get_api_alert_states(self) -> list[AlertState]:
        self._evaluate_all()
        with self._lock:
            return [
                AlertState(
                    operation=op,
                    alerts=ring.alerts.model_copy(),
                    last_updated=ring.last_updated,
                )
                for op, ring in self._rings.items()
            ]

    def operations(self) -> list[str]:
        with self._lock:
            return list(self._rings)

    # ---------- 配置 ----------

    def configure(self, **options: Any) -> None:
        """更新部分配置项，未提供的选项保持不变。"""
        merged = {**self.config.model_dump(), **options}
        new_config = MonitorConfig.model_validate(merged)
        with self._lock:
            if new_config.max_samples_per_operation != self.config.max_samples_per_operation:
                for ring in self._rings.values():
                    ring.samples = deque(
                        ring.samples, maxlen=new_config.max_samples_per_operation
                    )
            self.config = new_config

    def reset(self, reset_options: bool = False) -> None:
        with self._lock:
            self._rings.clear()
            if reset_options:
                self.config = MonitorConfig()

    # ---------- 内部 ----------

    def _metrics_of(
        self, operation: str, ring: _OperationRing, now: float
    ) -> OperationMetrics:
        ring.prune(now)
        return OperationMetrics(
            operation=operation,
            totals=ring.totals.model_copy(),
            windows={name: window_stats(name, ring.samples, now) for name in WINDOWS},
            alerts=ring.alerts.model_copy(),
            last_updated=ring.last_updated,
        )

    def _should_evaluate(self, operation: str) -> bool:
        if not self.config.enabled:
            return False
        return not self.config.operations or operation in self.config.operations

    def _evaluate_all(self) -> None:
        transitions: list[dict[str, Any]] = []
        with self._lock:
            now = self._clock()
            for operation, ring in self._rings.items():
                if not self._should_evaluate(operation):
                    continue
                ring.prune(now)
                stats_5m = window_stats("5m", ring.samples, now)
                stats_15m = window_stats("15m", ring.samples, now)
                failure = self._failure_level(stats_5m)
                latency, baseline = self._latency_level(stats_5m, stats_15m)
                for kind, level in (("failure", failure), ("latency", latency)):
                    if getattr(ring.alerts, kind) != level:
                        setattr(ring.alerts, kind, level)
                        transitions.append(
                            {
                                "operation": operation,
                                "alert_type": kind,
                                "level": level,
                                "sample_size": stats_5m.sample_size,
                                "failure_rate": round(stats_5m.failure_rate, 4),
                                "p95_duration": stats_5m.p95_duration,
                                "baseline_p95": baseline,
                                "status_counts": stats_5m.status_counts,
                            }
                        )
        for payload in transitions:
            _log_transition(payload)

    def _failure_level(self, stats: WindowStats) -> AlertLevel:
        if stats.sample_size < self.config.min_sample:
            return "none"
        if stats.failure_rate >= self.config.failure_error:
            return "error"
        if stats.failure_rate >= self.config.failure_warn:
            return "warn"
        return "none"

    def _latency_level(
        self, stats_5m: WindowStats, stats_15m: WindowStats
    ) -> tuple[AlertLevel, float]:
        baseline = stats_15m.p95_duration or stats_5m.p95_duration
        if stats_5m.sample_size < self.config.min_sample or baseline <= 0:
            return "none", baseline
        if stats_5m.p95_duration <= baseline:
            return "none", baseline
        ratio = stats_5m.p95_duration / baseline
        if ratio >= self.config.p95_error_ratio:
            return "error", baseline
        if ratio >= self.config.p95_warn_ratio:
            return "warn", baseline
        return "none", baseline


def _log_transition(payload: dict[str, Any]) -> None:
    level = payload["level"]
    if level == "none":
        logger.info("API 指标恢复正常。", **payload)
    elif level == "warn":
        logger.warning("API 指标异常（警告）。", **payload)
    else:
        logger.error("API 指标异常（严重）。", **payload)


# ---------- 进程内默认实例 ----------

_default_monitor = ApiMonitor()


def get_default_monitor() -> ApiMonitor:
    return _default_monitor


def record_api_call(sample: MetricSample) -> None:
    _default_monitor.record_api_call(sample)


def get_api_metrics(
    operation: str | None = None,
) -> OperationMetrics | list[OperationMetrics] | None:
    return _default_monitor.get_api_metrics(operation)


def get_api_alert_states() -> list[AlertState]:
    return _default_monitor.get_api_alert_states()


def configure_api_monitor(**options: Any) -> None:
    _default_monitor.configure(**options)


def reset_api_monitor(reset_options: bool = False) -> None:
    _default_monitor.reset(reset_options=reset_options)
