# trans_gate/client.py
"""
弹性客户端：翻译管线与远端端点之间唯一的接触点。

`execute()` 依次经过 缓存 -> 在途去重 -> 主请求（带退避重试）-> 降级链。
普通的远端失败（网络错误、超时、非 2xx）一律转换为失败的 `TranslationResult`，
只有格式错误的请求（编程错误）才会抛出异常。

每一次尝试（包括重试与降级）都会单独上报给 API 监控。
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

from trans_gate import prompts
from trans_gate.cache import ResultCache, fingerprint
from trans_gate.config import ClientConfig
from trans_gate.dedup import InFlightRegistry
from trans_gate.engines.base import BaseCompletionEngine
from trans_gate.fallbacks import FallbackContext, FallbackStep, default_fallbacks
from trans_gate.monitoring import ApiMonitor, get_default_monitor
from trans_gate.types import (
    CompletionCall,
    EngineError,
    EngineResult,
    EngineSuccess,
    MetricSample,
    ResultMeta,
    TranslationRequest,
    TranslationResult,
)

logger = structlog.get_logger(__name__)


@dataclass
class RetryState:
    """单次 `execute` 调用内的重试状态。`attempt` 为已经发生的重试次数。"""

    max_retries: int
    base_delay: float
    max_delay: float
    use_exponential_backoff: bool = True
    attempt: int = 0
    next_delay: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    def advance(self) -> float:
        """登记一次重试，并返回本次重试前应等待的秒数。"""
        self.attempt += 1
        if self.use_exponential_backoff:
            delay = self.base_delay * (2 ** (self.attempt - 1))
        else:
            delay = self.base_delay
        self.next_delay = min(delay, self.max_delay)
        return self.next_delay


class ResilientClient:
    def __init__(
        self,
        engine: BaseCompletionEngine,
        config: ClientConfig | None = None,
        *,
        cache: ResultCache | None = None,
        inflight: InFlightRegistry | None = None,
        monitor: ApiMonitor | None = None,
        fallbacks: Sequence[FallbackStep] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.engine = engine
        self.config = config or ClientConfig()
        self.cache = cache or ResultCache(
            ttl=self.config.cache_ttl, max_entries=self.config.max_entries
        )
        self.inflight = inflight or InFlightRegistry(self.config.max_in_flight)
        self.monitor = monitor or get_default_monitor()
        self.fallbacks = list(fallbacks) if fallbacks is not None else default_fallbacks()
        self._sleep = sleep

    async def execute(
        self,
        request: TranslationRequest,
        *,
        strategy: str | None = None,
        fallbacks: Sequence[FallbackStep] | None = None,
    ) -> TranslationResult:
        if not isinstance(request, TranslationRequest):
            raise TypeError(
                f"execute() 需要 TranslationRequest，收到 {type(request).__name__}"
            )
        if not request.text:
            return TranslationResult.original(
                request.text, request.target_language, strategy=strategy
            )

        key = fingerprint(request, strategy)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("命中结果缓存。", key=key[:12], strategy=strategy)
            return cached.with_meta(cache_hit=True, duration=0.0)

        steps = list(fallbacks) if fallbacks is not None else self.fallbacks
        return await self.inflight.run(
            key, lambda: self._run_sequence(key, request, strategy, steps)
        )

    async def _run_sequence(
        self,
        key: str,
        request: TranslationRequest,
        strategy: str | None,
        steps: Sequence[FallbackStep],
    ) -> TranslationResult:
        """一条完整的尝试序列：主请求及其重试，然后按顺序走降级链。"""
        started = time.perf_counter()
        system_prompt = request.system_prompt or prompts.simple_prompt(
            request.target_language
        )
        call = CompletionCall(
            text=request.text,
            target_language=request.target_language,
            system_prompt=system_prompt,
        )
        state = self._retry_state(self.config.max_retries)
        outcome = await self._attempt_with_retries(call, state)
        attempts = state.attempt + 1
        fallback_used: str | None = None

        if isinstance(outcome, EngineError):
            for step in steps:
                ctx = FallbackContext(
                    request=request,
                    system_prompt=system_prompt,
                    last_error=outcome.error_message,
                    last_status=outcome.status_code,
                    attempts=attempts,
                )
                overrides = step.prepare(ctx)
                if overrides is None:
                    continue
                logger.warning(
                    "主请求路径已耗尽，尝试降级步骤。",
                    fallback=step.name,
                    last_error=outcome.error_message,
                    attempts=attempts,
                )
                updates = overrides.model_dump(
                    exclude={"max_retries"}, exclude_none=True
                )
                fb_state = self._retry_state(overrides.max_retries)
                outcome = await self._attempt_with_retries(
                    call.model_copy(update=updates), fb_state
                )
                attempts += fb_state.attempt + 1
                if isinstance(outcome, EngineSuccess):
                    fallback_used = step.name
                    break

        meta = ResultMeta(
            duration=(time.perf_counter() - started) * 1000,
            retry_count=attempts - 1,
            strategy=strategy,
            fallback=fallback_used,
        )
        if isinstance(outcome, EngineSuccess):
            result = TranslationResult(
                success=True,
                text=outcome.text,
                language=request.target_language,
                meta=meta,
            )
            self.cache.set(key, result)
            return result

        logger.error(
            "远端调用在重试与降级后仍然失败。",
            error=outcome.error_message,
            status_code=outcome.status_code,
            attempts=attempts,
        )
        return TranslationResult(
            success=False,
            text=request.text,
            error=outcome.error_message,
            is_original=True,
            language=request.target_language,
            meta=meta,
        )

    def _retry_state(self, max_retries: int) -> RetryState:
        return RetryState(
            max_retries=max_retries,
            base_delay=self.config.retry_delay,
            max_delay=self.config.max_retry_delay,
            use_exponential_backoff=self.config.use_exponential_backoff,
        )

    async def _attempt_with_retries(
        self, call: CompletionCall, state: RetryState
    ) -> EngineResult:
        while True:
            outcome = await self._attempt(call)
            if isinstance(outcome, EngineSuccess):
                return outcome
            if not outcome.is_retryable or state.exhausted:
                return outcome
            delay = state.advance()
            logger.warning(
                "远端调用失败，准备重试。",
                attempt=state.attempt,
                max_retries=state.max_retries,
                delay=delay,
                status_code=outcome.status_code,
                error=outcome.error_message,
            )
            await self._sleep(delay)

    async def _attempt(self, call: CompletionCall) -> EngineResult:
        """单次尝试，带硬超时；结果无论成败都上报给监控。"""
        started = time.perf_counter()
        outcome: EngineResult
        try:
            outcome = await asyncio.wait_for(
                self.engine.complete(call), timeout=self.config.request_timeout
            )
        except asyncio.TimeoutError:
            outcome = EngineError(
                error_message=f"单次调用超过 {self.config.request_timeout}s 未完成。",
                is_retryable=True,
                status_code="timeout",
            )
        self.monitor.record_api_call(
            MetricSample(
                operation=self.config.monitor_operation,
                success=isinstance(outcome, EngineSuccess),
                duration=(time.perf_counter() - started) * 1000,
                status_code=outcome.status_code,
            )
        )
        return outcome

    async def sweep_periodically(self, stop_event: asyncio.Event) -> None:
        """按 `cache_sweep_interval` 定期清理过期缓存，直到 `stop_event` 被设置。"""
        interval = self.config.cache_sweep_interval
        if interval <= 0:
            return
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                removed = self.cache.sweep()
                if removed:
                    logger.debug("已清理过期缓存条目。", removed=removed)
