# trans_gate/strategies.py
"""
三种执行策略。它们以不同方式组合分块器、保护编解码与弹性客户端：

- simple:    直接调用，使用最简提示词。
- enhanced:  保护 -> 单次调用（增强提示词）-> 还原。
- long_text: 保护 -> 分块 -> 逐块调用 -> 按原顺序拼接 -> 还原。

策略本身不做质量判断；占位符无法完整还原时返回 `PROTECTION_FAILED`
哨兵值，由质量门处理。
"""

import asyncio
import re
import time
from abc import ABC, abstractmethod

import structlog

from trans_gate import prompts
from trans_gate.chunking import Chunk, chunk
from trans_gate.client import ResilientClient
from trans_gate.config import OrchestratorConfig
from trans_gate.protection import (
    PLACEHOLDER_PATTERN,
    PROTECTION_FAILED,
    ProtectionCodec,
    ProtectionMap,
)
from trans_gate.types import ResultMeta, Strategy, TranslationRequest, TranslationResult

logger = structlog.get_logger(__name__)

_TAG_RE = re.compile(r"</?[a-zA-Z][^<>]*>")
_LETTER_RE = re.compile(r"[^\W\d_]")


def has_translatable_text(text: str) -> bool:
    """去掉占位符与标签后仍含有字母时，才值得发起一次远端调用。"""
    stripped = _TAG_RE.sub(" ", PLACEHOLDER_PATTERN.sub(" ", text))
    return bool(_LETTER_RE.search(stripped))


def _split_whitespace(text: str) -> tuple[str, str, str]:
    body = text.strip()
    if not body:
        return text, "", ""
    lead = text[: len(text) - len(text.lstrip())]
    trail = text[len(text.rstrip()) :]
    return lead, body, trail


def _restore_or_flag(
    codec: ProtectionCodec, text: str, pmap: ProtectionMap, strategy: Strategy
) -> str:
    missing = pmap.missing_in(text)
    if missing:
        logger.warning(
            "占位符无法完整还原，交由质量门处理。",
            strategy=strategy.value,
            missing_count=len(missing),
            missing=missing[:5],
        )
        return PROTECTION_FAILED
    return codec.restore(text, pmap)


class BaseStrategy(ABC):
    name: Strategy

    def __init__(self, client: ResilientClient, codec: ProtectionCodec):
        self.client = client
        self.codec = codec

    @abstractmethod
    def default_prompt(self, target_language: str) -> str: ...

    def resolve_prompt(
        self, request: TranslationRequest, system_prompt: str | None
    ) -> str:
        """优先级：显式覆盖（如严格重试）> 请求自带 > 策略默认。"""
        return (
            system_prompt
            or request.system_prompt
            or self.default_prompt(request.target_language)
        )

    @abstractmethod
    async def run(
        self, request: TranslationRequest, system_prompt: str | None = None
    ) -> TranslationResult: ...


class SimpleStrategy(BaseStrategy):
    name = Strategy.SIMPLE

    def default_prompt(self, target_language: str) -> str:
        return prompts.simple_prompt(target_language)

    async def run(
        self, request: TranslationRequest, system_prompt: str | None = None
    ) -> TranslationResult:
        outbound = request.model_copy(
            update={"system_prompt": self.resolve_prompt(request, system_prompt)}
        )
        return await self.client.execute(outbound, strategy=self.name.value)


class EnhancedStrategy(BaseStrategy):
    name = Strategy.ENHANCED

    def default_prompt(self, target_language: str) -> str:
        return prompts.enhanced_prompt(target_language)

    async def run(
        self, request: TranslationRequest, system_prompt: str | None = None
    ) -> TranslationResult:
        masked, pmap = self.codec.protect(request.text)
        outbound = request.model_copy(
            update={
                "text": masked,
                "system_prompt": self.resolve_prompt(request, system_prompt),
            }
        )
        result = await self.client.execute(outbound, strategy=self.name.value)
        if not result.success:
            return result.model_copy(update={"text": request.text})
        text = _restore_or_flag(self.codec, result.text, pmap, self.name)
        return result.model_copy(update={"text": text})


class LongTextStrategy(BaseStrategy):
    name = Strategy.LONG_TEXT

    def __init__(
        self,
        client: ResilientClient,
        codec: ProtectionCodec,
        config: OrchestratorConfig | None = None,
    ):
        super().__init__(client, codec)
        self.config = config or OrchestratorConfig()

    def default_prompt(self, target_language: str) -> str:
        return prompts.enhanced_prompt(target_language)

    async def run(
        self, request: TranslationRequest, system_prompt: str | None = None
    ) -> TranslationResult:
        started = time.perf_counter()
        masked, pmap = self.codec.protect(request.text)
        chunks = chunk(masked, self.config.max_chunk_size)
        prompt = self.resolve_prompt(request, system_prompt)
        semaphore = asyncio.Semaphore(self.config.chunk_concurrency)
        logger.debug(
            "长文本已分块。", chunk_count=len(chunks), length=len(request.text)
        )

        async def translate_chunk(piece: Chunk) -> TranslationResult:
            lead, body, trail = _split_whitespace(piece.text)
            if not has_translatable_text(body):
                return TranslationResult(success=True, text=piece.text)
            async with semaphore:
                res = await self.client.execute(
                    request.model_copy(update={"text": body, "system_prompt": prompt}),
                    strategy=self.name.value,
                )
            if not res.success:
                return res
            return res.model_copy(update={"text": f"{lead}{res.text}{trail}"})

        # gather 按提交顺序返回结果，与完成顺序无关
        results = await asyncio.gather(*(translate_chunk(c) for c in chunks))
        retry_count = sum(r.meta.retry_count for r in results)
        duration = (time.perf_counter() - started) * 1000

        failures = [(i, r) for i, r in enumerate(results) if not r.success]
        if failures:
            index, first = failures[0]
            logger.error(
                "长文本分块翻译失败，返回原文。",
                failed=len(failures),
                chunk_count=len(chunks),
                first_failed_index=index,
                error=first.error,
            )
            return TranslationResult.original(
                request.text,
                request.target_language,
                success=False,
                error=f"{len(failures)}/{len(chunks)} 个分块翻译失败: {first.error}",
                duration=duration,
                retry_count=retry_count,
                strategy=self.name.value,
                chunk_count=len(chunks),
            )

        joined = "".join(r.text for r in results)
        translated = [r for r in results if r.language]
        return TranslationResult(
            success=True,
            text=_restore_or_flag(self.codec, joined, pmap, self.name),
            language=request.target_language,
            meta=ResultMeta(
                duration=duration,
                retry_count=retry_count,
                strategy=self.name.value,
                cache_hit=bool(translated) and all(r.meta.cache_hit for r in translated),
                chunk_count=len(chunks),
            ),
        )
