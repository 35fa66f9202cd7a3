# trans_gate/quality.py
"""
质量门：与语言学正确性无关的结构性与完整性检查。

- 品牌词短路：在任何网络调用之前执行，命中时直接返回原文。
- 占位符降级：译文是“保护失败”哨兵或一个孤立的占位符时，替换为降级文本。
- 完整性评估：非空、与原文不同、无前言/截断、长度比例、标签数量一致、
  无残留占位符。不完整的结果用更严格的提示词重试一次，之后带质量标记接受。
"""

import re
from collections import Counter
from collections.abc import Awaitable, Callable

import structlog

from trans_gate import prompts
from trans_gate.chunking import is_likely_markup
from trans_gate.client import ResilientClient
from trans_gate.config import QualityConfig
from trans_gate.protection import PROTECTION_FAILED, brand_pattern, count_placeholders
from trans_gate.types import CompletenessReport, TranslationRequest, TranslationResult

logger = structlog.get_logger(__name__)

SHORT_TEXT_MIN = 15

SKU_RE = re.compile(r"^[A-Z]{2,}[-_]?\d+")
ACRONYM_RE = re.compile(r"^[A-Z]{2,}$")
CONFIG_KEY_RE = re.compile(r"^[a-z0-9]+(?:_[a-z0-9]+)+$")
BARE_PLACEHOLDER_RE = re.compile(r"^__PROTECTED\d*_[A-Z_]+?(?:_\d+)?__$")

_TAG_RE = re.compile(r"</?[a-zA-Z][^<>]*>")
_LETTER_RE = re.compile(r"[^\W\d_]")
_PREAMBLE_RE = re.compile(
    r"^(here is|here's|i'll translate|the translation|translation:|翻译如下|翻译结果|以下是)",
    re.IGNORECASE,
)
_CONTINUED_RE = re.compile(r"\[继续\]|\[continued\]|\[more\]", re.IGNORECASE)
_ELLIPSIS_ENDINGS = ("...", "…")
_CJK_PREFIXES = ("zh", "ja", "ko")

RetryFn = Callable[[str], Awaitable[TranslationResult]]


def is_placeholder_sentinel(source: str, translated: str) -> bool:
    """译文为保护失败哨兵，或原文不含占位符而译文只剩一个占位符。"""
    text = translated.strip()
    if text == PROTECTION_FAILED:
        return True
    return bool(BARE_PLACEHOLDER_RE.match(text)) and count_placeholders(source) == 0


def evaluate_completeness(
    source: str, translated: str, target_language: str
) -> CompletenessReport:
    """对译文做启发式完整性判定，返回 `(is_complete, reason)`。"""
    if not translated or not translated.strip():
        return CompletenessReport(is_complete=False, reason="empty")

    src = source.strip()
    out = translated.strip()
    if len(src) <= SHORT_TEXT_MIN:
        return CompletenessReport(is_complete=True, reason="short_text")

    if count_placeholders(out) > count_placeholders(src):
        return CompletenessReport(is_complete=False, reason="leftover_placeholder")
    if "TEXT_TOO_LONG" in out:
        return CompletenessReport(is_complete=False, reason="text_too_long")
    if _PREAMBLE_RE.match(out) and not _PREAMBLE_RE.match(src):
        return CompletenessReport(is_complete=False, reason="preamble")
    if _CONTINUED_RE.search(out) or (
        out.endswith(_ELLIPSIS_ENDINGS) and not src.endswith(_ELLIPSIS_ENDINGS)
    ):
        return CompletenessReport(is_complete=False, reason="truncated")
    if out == src and _LETTER_RE.search(src):
        return CompletenessReport(is_complete=False, reason="unchanged")

    markup = is_likely_markup(src)
    if markup and len(_TAG_RE.findall(src)) != len(_TAG_RE.findall(out)):
        return CompletenessReport(is_complete=False, reason="tag_mismatch")

    if markup:
        floor = 0.05
    elif target_language.lower().startswith(_CJK_PREFIXES):
        floor = 0.1
    else:
        floor = 0.2
    if len(out) / len(src) < floor:
        return CompletenessReport(is_complete=False, reason="too_short")

    return CompletenessReport(is_complete=True, reason="ok")


class QualityGate:
    def __init__(
        self, config: QualityConfig | None = None, client: ResilientClient | None = None
    ):
        self.config = config or QualityConfig()
        self.client = client
        self._brand_re = brand_pattern(self.config.brand_terms)
        self.placeholder_stats: Counter[str] = Counter()

    # ---------- 调用前 ----------

    def brand_skip_reason(self, text: str) -> str | None:
        """短文本命中品牌词、SKU 或全大写缩写时返回原因，否则返回 None。"""
        stripped = text.strip()
        if not stripped or len(stripped) >= self.config.brand_max_length:
            return None
        if self._brand_re is not None and self._brand_re.search(stripped):
            return "brand_term"
        if SKU_RE.match(stripped):
            return "sku"
        if ACRONYM_RE.match(stripped):
            return "acronym"
        return None

    def preflight(self, request: TranslationRequest) -> TranslationResult | None:
        reason = self.brand_skip_reason(request.text)
        if reason is None:
            return None
        logger.info(
            "命中品牌词规则，跳过翻译。",
            reason=reason,
            target_language=request.target_language,
        )
        return TranslationResult.original(
            request.text, request.target_language, skipped_reason=reason
        )

    # ---------- 调用后 ----------

    async def review(
        self,
        request: TranslationRequest,
        result: TranslationResult,
        retry: RetryFn | None = None,
    ) -> TranslationResult:
        if not result.success:
            return result
        if is_placeholder_sentinel(request.text, result.text):
            return await self.handle_placeholder_fallback(request, result)

        report = evaluate_completeness(request.text, result.text, request.target_language)
        if report.is_complete:
            return result

        logger.warning(
            "译文不完整。",
            reason=report.reason,
            target_language=request.target_language,
            strict_retry=bool(self.config.strict_retry and retry),
        )
        if not (self.config.strict_retry and retry):
            return result.with_meta(quality_flag=report.reason)

        retried = await retry(prompts.strict_prompt(request.target_language))
        retry_count = result.meta.retry_count + retried.meta.retry_count + 1
        if not retried.success or is_placeholder_sentinel(request.text, retried.text):
            return result.with_meta(quality_flag=report.reason, retry_count=retry_count)

        second = evaluate_completeness(
            request.text, retried.text, request.target_language
        )
        if second.is_complete:
            return retried.with_meta(retry_count=retry_count)
        logger.warning(
            "严格重试后译文仍不完整，按原样接受。",
            reason=second.reason,
            target_language=request.target_language,
        )
        return retried.with_meta(quality_flag=second.reason, retry_count=retry_count)

    async def handle_placeholder_fallback(
        self, request: TranslationRequest, result: TranslationResult
    ) -> TranslationResult:
        language = request.target_language
        self.placeholder_stats[language] += 1
        logger.warning(
            "译文为占位符，触发占位符降级。",
            target_language=language,
            count=self.placeholder_stats[language],
            output=result.text[:80],
        )

        recovered = await self._config_key_fallback(request)
        if recovered is not None:
            return recovered

        fallback_text = self.config.placeholder_fallback_text
        if fallback_text is None:
            fallback_text = request.text
        return TranslationResult.original(
            fallback_text,
            language,
            **{
                **result.meta.model_dump(),
                "quality_flag": "placeholder_fallback",
                "fallback": "placeholder",
            },
        )

    async def _config_key_fallback(
        self, request: TranslationRequest
    ) -> TranslationResult | None:
        """配置键（如 `social_facebook`）按可读短语重新翻译一次。"""
        key = request.text.strip()
        if not (self.config.config_key_fallback and self.client and CONFIG_KEY_RE.match(key)):
            return None
        res = await self.client.execute(
            TranslationRequest(
                text=key.replace("_", " "),
                target_language=request.target_language,
                system_prompt=prompts.config_key_prompt(request.target_language),
            ),
            strategy="config_key",
        )
        if not res.success or not res.text.strip() or count_placeholders(res.text):
            return None
        logger.info("配置键降级翻译成功。", key=key, target_language=request.target_language)
        return res.with_meta(fallback="config-key")

    def placeholder_fallback_stats(self) -> dict[str, int]:
        return dict(self.placeholder_stats)
