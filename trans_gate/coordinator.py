# trans_gate/coordinator.py
"""本模块包含 Trans-Gate 的主协调器，负责组装并管理整条翻译管线的生命周期。"""

import asyncio
from typing import Any

import structlog

from trans_gate.cache import ResultCache
from trans_gate.client import ResilientClient
from trans_gate.config import TransGateConfig
from trans_gate.dedup import InFlightRegistry
from trans_gate.engine_registry import get_engine_class
from trans_gate.engines.base import BaseCompletionEngine
from trans_gate.exceptions import PersistenceError, TransGateError
from trans_gate.fallbacks import default_fallbacks
from trans_gate.monitoring import ApiMonitor, get_default_monitor
from trans_gate.orchestrator import StrategyOrchestrator
from trans_gate.persistence import (
    MetricsPersistence,
    SQLAlchemyMetricsStore,
    create_metrics_store,
)
from trans_gate.quality import QualityGate
from trans_gate.types import TranslationRequest, TranslationResult

logger = structlog.get_logger(__name__)


class Coordinator:
    """异步主协调器：引擎 -> 弹性客户端 -> 质量门 -> 策略编排，以及可选的指标持久化。"""

    def __init__(
        self,
        config: TransGateConfig,
        engine: BaseCompletionEngine | None = None,
        monitor: ApiMonitor | None = None,
        store: SQLAlchemyMetricsStore | None = None,
    ):
        self.config = config
        self.monitor = monitor or get_default_monitor()
        self.initialized = False
        self._shutting_down = False
        self._engine = engine
        self._store = store
        self._stop_event = asyncio.Event()
        self._active_tasks: set[asyncio.Task[Any]] = set()

        self.client: ResilientClient | None = None
        self.quality: QualityGate | None = None
        self.orchestrator: StrategyOrchestrator | None = None
        self.persistence: MetricsPersistence | None = None

    @property
    def engine(self) -> BaseCompletionEngine:
        if self._engine is None:
            raise TransGateError("协调器尚未初始化。")
        return self._engine

    async def initialize(self) -> None:
        """初始化协调器：创建引擎、组装管线，并按配置启动后台任务。"""
        if self.initialized:
            return
        logger.info("协调器初始化开始...")
        self._shutting_down = False
        self._stop_event.clear()

        if self._engine is None:
            engine_cls = get_engine_class(self.config.engine.active_engine)
            self._engine = engine_cls(self.config.engine)
        if not self._engine.initialized:
            await self._engine.initialize()

        client_config = self.config.client
        self.client = ResilientClient(
            self._engine,
            client_config,
            cache=ResultCache(ttl=client_config.cache_ttl, max_entries=client_config.max_entries),
            inflight=InFlightRegistry(client_config.max_in_flight),
            monitor=self.monitor,
            fallbacks=default_fallbacks(self.config.engine.fallback_model),
        )
        self.quality = QualityGate(self.config.quality, client=self.client)
        self.orchestrator = StrategyOrchestrator(
            self.client, self.quality, self.config.orchestrator
        )
        self._spawn(self.client.sweep_periodically(self._stop_event), "cache-sweeper")

        if self.config.persistence.enabled:
            await self._start_persistence()

        self.initialized = True
        logger.info(
            "协调器初始化完成。",
            engine=self._engine.name,
            persistence=self.persistence is not None,
        )

    async def _start_persistence(self) -> None:
        if self._store is None:
            self._store = create_metrics_store(self.config.persistence)
        try:
            await self._store.create_all()
        except PersistenceError:
            logger.error("指标表初始化失败，指标持久化将不会启动。", exc_info=True)
            return
        persistence = MetricsPersistence(
            self._store, self.config.persistence, monitor=self.monitor
        )
        if await persistence.start():
            self.persistence = persistence
        else:
            logger.info("本实例不是指标持久化的写入者。")

    def _spawn(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)

    async def translate(self, request: TranslationRequest) -> TranslationResult:
        """翻译一个请求。除格式错误的请求外，永远返回结构化结果。"""
        if not self.initialized:
            await self.initialize()
        assert self.orchestrator is not None
        return await self.orchestrator.execute(request)

    async def close(self) -> None:
        """优雅地关闭协调器和所有相关资源。"""
        if self._shutting_down or not self.initialized:
            return
        logger.info("开始优雅停机...")
        self._shutting_down = True
        self._stop_event.set()

        if self._active_tasks:
            await asyncio.gather(*self._active_tasks, return_exceptions=True)

        if self.persistence is not None:
            await self.persistence.stop()
            self.persistence = None
        if self._store is not None:
            await self._store.close()

        await self.engine.close()
        self.initialized = False
        logger.info("优雅停机完成。")
