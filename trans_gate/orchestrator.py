# trans_gate/orchestrator.py
"""
策略编排：根据内容形态选择执行策略并运行，最后交给质量门验收。

选择规则是确定的纯函数：含标记且超过长文本阈值 -> long_text；
仅含标记 -> enhanced；其余 -> simple。请求上的 `strategy_hint` 优先于自动选择。
"""

import time

import structlog

from trans_gate.chunking import is_likely_markup
from trans_gate.client import ResilientClient
from trans_gate.config import OrchestratorConfig
from trans_gate.protection import ProtectionCodec
from trans_gate.quality import QualityGate
from trans_gate.strategies import (
    BaseStrategy,
    EnhancedStrategy,
    LongTextStrategy,
    SimpleStrategy,
)
from trans_gate.types import Strategy, TranslationRequest, TranslationResult

logger = structlog.get_logger(__name__)


def select_strategy(request: TranslationRequest, long_text_threshold: int) -> Strategy:
    if request.strategy_hint is not None:
        return request.strategy_hint
    if is_likely_markup(request.text):
        if len(request.text) > long_text_threshold:
            return Strategy.LONG_TEXT
        return Strategy.ENHANCED
    return Strategy.SIMPLE


class StrategyOrchestrator:
    def __init__(
        self,
        client: ResilientClient,
        quality: QualityGate,
        config: OrchestratorConfig | None = None,
        codec: ProtectionCodec | None = None,
    ):
        self.client = client
        self.quality = quality
        self.config = config or OrchestratorConfig()
        self.codec = codec or ProtectionCodec(quality.config.brand_terms)
        self.strategies: dict[Strategy, BaseStrategy] = {
            Strategy.SIMPLE: SimpleStrategy(client, self.codec),
            Strategy.ENHANCED: EnhancedStrategy(client, self.codec),
            Strategy.LONG_TEXT: LongTextStrategy(client, self.codec, self.config),
        }

    def select(self, request: TranslationRequest) -> Strategy:
        return select_strategy(request, self.config.long_text_threshold)

    async def execute(self, request: TranslationRequest) -> TranslationResult:
        """翻译管线的唯一入口。除格式错误的请求外不抛出异常。"""
        if not isinstance(request, TranslationRequest):
            raise TypeError(
                f"execute() 需要 TranslationRequest，收到 {type(request).__name__}"
            )
        started = time.perf_counter()
        if not request.text:
            return TranslationResult.original(
                request.text, request.target_language, skipped_reason="empty"
            )

        skipped = self.quality.preflight(request)
        if skipped is not None:
            return skipped

        strategy = self.select(request)
        runner = self.strategies[strategy]
        log = logger.bind(strategy=strategy.value, target_language=request.target_language)
        log.debug("开始执行翻译策略。", length=len(request.text))

        result = await runner.run(request)

        async def strict_retry(prompt: str) -> TranslationResult:
            return await runner.run(request, system_prompt=prompt)

        result = await self.quality.review(request, result, retry=strict_retry)
        result = result.with_meta(
            strategy=strategy.value, duration=(time.perf_counter() - started) * 1000
        )
        log.debug(
            "翻译策略执行完成。",
            success=result.success,
            is_original=result.is_original,
            cache_hit=result.meta.cache_hit,
            retry_count=result.meta.retry_count,
        )
        return result
