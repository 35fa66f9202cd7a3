# trans_gate/engines/base.py
"""
本模块定义了所有远端生成引擎必须继承的抽象基类（ABC）。

引擎只负责“一次远端调用”：不重试、不缓存、不降级，这些都由
`ResilientClient` 负责。引擎把所有失败都表示为 `EngineError` 值，而不是抛出异常。
"""

import asyncio
from abc import ABC, abstractmethod

import structlog

from trans_gate.config import EngineSettings
from trans_gate.rate_limiter import RateLimiter
from trans_gate.types import CompletionCall, EngineError, EngineResult

logger = structlog.get_logger(__name__)


class BaseCompletionEngine(ABC):
    """远端生成引擎的纯异步抽象基类，内置速率限制和并发控制。"""

    VERSION: str = "1.0.0"

    def __init__(self, settings: EngineSettings):
        self.settings = settings
        self._rate_limiter = RateLimiter.from_limits(settings.rpm, settings.rps)
        self._concurrency_semaphore: asyncio.Semaphore | None = None
        if settings.max_concurrency:
            self._concurrency_semaphore = asyncio.Semaphore(settings.max_concurrency)
        self.initialized: bool = False

    @property
    def name(self) -> str:
        """从类名自动推断引擎的名称。"""
        return self.__class__.__name__.replace("Engine", "").lower()

    async def initialize(self) -> None:
        """引擎的异步初始化钩子，用于设置连接池等。"""
        self.initialized = True

    async def close(self) -> None:
        """引擎的异步关闭钩子，用于安全释放资源。"""
        self.initialized = False

    @abstractmethod
    async def _execute(self, call: CompletionCall) -> EngineResult:
        """[子类实现] 真正执行单次远端调用的逻辑。"""
        ...

    async def complete(self, call: CompletionCall) -> EngineResult:
        """[模板方法] 执行单次调用，应用速率与并发限制，并把意外异常转换为失败值。"""
        if not self.initialized:
            await self.initialize()
        if self._rate_limiter:
            await self._rate_limiter.acquire()
        try:
            if self._concurrency_semaphore:
                async with self._concurrency_semaphore:
                    return await self._execute(call)
            return await self._execute(call)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("引擎执行时发生意外异常。", engine=self.name, exc_info=True)
            return EngineError(
                error_message=f"引擎执行异常: {e.__class__.__name__}: {e}",
                is_retryable=True,
                status_code="exception",
            )
