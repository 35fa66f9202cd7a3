# tests/unit/test_quality.py
"""针对 `trans_gate.quality` 的单元测试：品牌词短路、占位符降级与完整性评估。"""

import pytest

from tests.helpers.fakes import ScriptedEngine, no_sleep, ok
from trans_gate import prompts
from trans_gate.client import ResilientClient
from trans_gate.config import ClientConfig, QualityConfig
from trans_gate.monitoring import ApiMonitor
from trans_gate.protection import PROTECTION_FAILED
from trans_gate.quality import QualityGate, evaluate_completeness, is_placeholder_sentinel
from trans_gate.types import TranslationRequest, TranslationResult

SOURCE = "This is a fairly long sentence that needs translation."


def _ok(text: str, language: str = "de") -> TranslationResult:
    return TranslationResult(success=True, text=text, language=language)


@pytest.mark.parametrize(
    "source, translated, target, reason",
    [
        (SOURCE, "", "de", "empty"),
        (SOURCE, "   ", "de", "empty"),
        ("Short one", "Kurz", "de", "short_text"),
        (SOURCE, "Dies ist __PROTECTED_URL_0__ ein Satz, der übersetzt werden muss.", "de", "leftover_placeholder"),
        (SOURCE, "TEXT_TOO_LONG", "de", "text_too_long"),
        ("Please translate this sentence now.", "Here is the translation: Bitte übersetze das.", "de", "preamble"),
        (SOURCE, "Dies ist ein ziemlich langer Satz, der...", "de", "truncated"),
        (SOURCE, "Dies ist ein Satz [continued]", "de", "truncated"),
        (SOURCE, SOURCE, "de", "unchanged"),
        ("<p>Hello <b>world</b> again and again</p>", "<p>Hallo Welt immer wieder</p>", "de", "tag_mismatch"),
        (SOURCE, "Hi", "de", "too_short"),
        (SOURCE, "Dies ist ein ziemlich langer Satz, der übersetzt werden muss.", "de", "ok"),
    ],
)
def test_evaluate_completeness_reasons(
    source: str, translated: str, target: str, reason: str
) -> None:
    report = evaluate_completeness(source, translated, target)
    assert report.reason == reason
    assert report.is_complete is (reason in {"ok", "short_text"})


def test_cjk_targets_allow_shorter_output() -> None:
    source = "The quick brown fox jumps over the lazy dog near the river."
    translated = "狐狸跳过河边懒狗"
    assert evaluate_completeness(source, translated, "zh-CN").is_complete
    assert evaluate_completeness(source, translated, "de").reason == "too_short"


@pytest.mark.parametrize(
    "source, translated, expected",
    [
        ("Anything at all", PROTECTION_FAILED, True),
        ("social_facebook", "__PROTECTED_VAR_0__", True),
        ("Keep __PROTECTED_VAR_0__ here", "__PROTECTED_VAR_0__", False),
        ("Hello", "Hallo", False),
    ],
)
def test_is_placeholder_sentinel(source: str, translated: str, expected: bool) -> None:
    assert is_placeholder_sentinel(source, translated) is expected


@pytest.mark.parametrize(
    "text, reason",
    [
        ("Acme", "brand_term"),
        ("acme pro x", "brand_term"),
        ("SKU-1234", "sku"),
        ("NASA", "acronym"),
        ("Hello world", None),
        ("Acme makes a lot of things and this sentence is much longer than fifty chars", None),
        ("Acme " + "x" * 44, "brand_term"),
        ("Acme " + "x" * 45, None),
        ("", None),
    ],
)
def test_brand_skip_reason(text: str, reason: str | None) -> None:
    gate = QualityGate(QualityConfig(brand_terms=["Acme"]))
    assert gate.brand_skip_reason(text) == reason


def test_preflight_returns_original_result() -> None:
    gate = QualityGate(QualityConfig(brand_terms=["Acme"]))
    skipped = gate.preflight(TranslationRequest(text="Acme", target_language="de"))
    assert skipped is not None
    assert skipped.is_original and skipped.success
    assert skipped.text == "Acme"
    assert skipped.meta.skipped_reason == "brand_term"
    assert gate.preflight(TranslationRequest(text="Hello there", target_language="de")) is None


@pytest.mark.asyncio
async def test_review_passes_failures_through() -> None:
    gate = QualityGate()
    request = TranslationRequest(text=SOURCE, target_language="de")
    failed = TranslationResult.original(SOURCE, "de", success=False, error="boom")
    assert await gate.review(request, failed) is failed


@pytest.mark.asyncio
async def test_placeholder_fallback_uses_source_by_default() -> None:
    gate = QualityGate(QualityConfig(config_key_fallback=False))
    request = TranslationRequest(text="Welcome back", target_language="de")

    result = await gate.review(request, _ok(PROTECTION_FAILED))

    assert result.text == "Welcome back"
    assert result.is_original
    assert result.meta.quality_flag == "placeholder_fallback"
    assert result.meta.fallback == "placeholder"
    assert gate.placeholder_fallback_stats() == {"de": 1}


@pytest.mark.asyncio
async def test_placeholder_fallback_uses_configured_text() -> None:
    gate = QualityGate(QualityConfig(placeholder_fallback_text="N/A"))
    request = TranslationRequest(text="Welcome back", target_language="fr")
    result = await gate.review(request, _ok("__PROTECTED_VAR_0__", "fr"))
    assert result.text == "N/A"
    assert gate.placeholder_fallback_stats() == {"fr": 1}


@pytest.mark.asyncio
async def test_config_key_is_retranslated_as_a_phrase() -> None:
    engine = ScriptedEngine([ok("Facebook 社交")])
    client = ResilientClient(
        engine, ClientConfig(max_retries=0), monitor=ApiMonitor(), fallbacks=[], sleep=no_sleep
    )
    gate = QualityGate(QualityConfig(), client=client)
    request = TranslationRequest(text="social_facebook", target_language="zh-CN")

    result = await gate.review(request, _ok("__PROTECTED_VAR_0__", "zh-CN"))

    assert result.text == "Facebook 社交"
    assert result.meta.fallback == "config-key"
    assert engine.calls[0].text == "social facebook"
    assert engine.calls[0].system_prompt == prompts.config_key_prompt("zh-CN")


@pytest.mark.asyncio
async def test_incomplete_result_gets_one_strict_retry() -> None:
    gate = QualityGate()
    request = TranslationRequest(text=SOURCE, target_language="de")
    prompts_seen: list[str] = []
    good = "Dies ist ein ziemlich langer Satz, der übersetzt werden muss."

    async def retry(prompt: str) -> TranslationResult:
        prompts_seen.append(prompt)
        return _ok(good)

    result = await gate.review(request, _ok(SOURCE), retry=retry)

    assert result.text == good
    assert result.meta.quality_flag is None
    assert result.meta.retry_count == 1
    assert prompts_seen == [prompts.strict_prompt("de")]


@pytest.mark.asyncio
async def test_still_incomplete_after_retry_is_accepted_with_flag() -> None:
    gate = QualityGate()
    request = TranslationRequest(text=SOURCE, target_language="de")
    calls = 0

    async def retry(prompt: str) -> TranslationResult:
        nonlocal calls
        calls += 1
        return _ok("Hi")

    result = await gate.review(request, _ok(SOURCE), retry=retry)

    assert calls == 1
    assert result.text == "Hi"
    assert result.meta.quality_flag == "too_short"


@pytest.mark.asyncio
async def test_strict_retry_can_be_disabled() -> None:
    gate = QualityGate(QualityConfig(strict_retry=False))
    request = TranslationRequest(text=SOURCE, target_language="de")

    async def retry(prompt: str) -> TranslationResult:
        raise AssertionError("不应触发重试")

    result = await gate.review(request, _ok(SOURCE), retry=retry)
    assert result.meta.quality_flag == "unchanged"
