# tests/unit/test_resilient_client.py
"""针对 `trans_gate.client.ResilientClient` 的单元测试：缓存、去重、重试退避与降级链。"""

import asyncio

import pytest

from tests.helpers.fakes import FakeClock, RecordingSleep, ScriptedEngine, fail, no_sleep, ok
from trans_gate import prompts
from trans_gate.cache import ResultCache
from trans_gate.client import ResilientClient, RetryState
from trans_gate.config import ClientConfig
from trans_gate.fallbacks import ModelFallback, RequestOverrides, StaticFallback
from trans_gate.monitoring import ApiMonitor
from trans_gate.types import TranslationRequest

OPERATION = "translation.chat_completions"


def make_client(engine, config: ClientConfig | None = None, **kwargs) -> ResilientClient:
    kwargs.setdefault("sleep", no_sleep)
    kwargs.setdefault("monitor", ApiMonitor())
    return ResilientClient(engine, config or ClientConfig(), **kwargs)


@pytest.fixture
def request_de() -> TranslationRequest:
    return TranslationRequest(text="Hello world", target_language="de")


@pytest.mark.asyncio
async def test_success_is_cached(request_de: TranslationRequest) -> None:
    engine = ScriptedEngine([ok("Hallo Welt")])
    client = make_client(engine)

    first = await client.execute(request_de, strategy="simple")
    second = await client.execute(request_de, strategy="simple")

    assert first.success and first.text == "Hallo Welt"
    assert first.meta.cache_hit is False
    assert second.text == "Hallo Welt"
    assert second.meta.cache_hit is True
    assert len(engine.calls) == 1


@pytest.mark.asyncio
async def test_default_system_prompt_is_used_when_request_has_none(
    request_de: TranslationRequest,
) -> None:
    engine = ScriptedEngine()
    await make_client(engine).execute(request_de)
    assert engine.calls[0].system_prompt == prompts.simple_prompt("de")


@pytest.mark.asyncio
async def test_retryable_failures_are_retried_with_exponential_backoff(
    request_de: TranslationRequest,
) -> None:
    engine = ScriptedEngine([fail(503), fail(429), ok("Hallo Welt")])
    sleep = RecordingSleep()
    client = make_client(
        engine, ClientConfig(max_retries=2, retry_delay=1.0, max_retry_delay=10.0), sleep=sleep
    )

    result = await client.execute(request_de)

    assert result.success and result.text == "Hallo Welt"
    assert result.meta.retry_count == 2
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_backoff_is_capped_by_max_retry_delay(request_de: TranslationRequest) -> None:
    engine = ScriptedEngine([fail(), fail(), fail(), ok("ok")])
    sleep = RecordingSleep()
    client = make_client(
        engine, ClientConfig(max_retries=3, retry_delay=1.0, max_retry_delay=1.5), sleep=sleep
    )
    await client.execute(request_de)
    assert sleep.delays == [1.0, 1.5, 1.5]


@pytest.mark.asyncio
async def test_fixed_delay_when_exponential_backoff_is_disabled(
    request_de: TranslationRequest,
) -> None:
    engine = ScriptedEngine([fail(), fail(), ok("ok")])
    sleep = RecordingSleep()
    config = ClientConfig(max_retries=2, retry_delay=0.5, use_exponential_backoff=False)
    await make_client(engine, config, sleep=sleep).execute(request_de)
    assert sleep.delays == [0.5, 0.5]


def test_retry_state_counts_attempts() -> None:
    state = RetryState(max_retries=2, base_delay=1.0, max_delay=3.0)
    assert not state.exhausted
    assert state.advance() == 1.0
    assert state.advance() == 2.0
    assert state.exhausted


@pytest.mark.asyncio
async def test_non_retryable_failure_stops_immediately(
    request_de: TranslationRequest,
) -> None:
    engine = ScriptedEngine([fail(400, retryable=False)])
    client = make_client(engine, fallbacks=[])

    result = await client.execute(request_de)

    assert result.success is False
    assert result.is_original is True
    assert result.text == "Hello world"
    assert result.error
    assert result.meta.retry_count == 0
    assert len(engine.calls) == 1


@pytest.mark.asyncio
async def test_failures_are_not_cached(request_de: TranslationRequest) -> None:
    engine = ScriptedEngine([fail(400, retryable=False), ok("Hallo Welt")])
    client = make_client(engine, fallbacks=[])

    assert (await client.execute(request_de)).success is False
    assert (await client.execute(request_de)).text == "Hallo Welt"


@pytest.mark.asyncio
async def test_simplified_prompt_fallback_runs_after_primary_is_exhausted(
    request_de: TranslationRequest,
) -> None:
    engine = ScriptedEngine([fail(), fail(), fail(), ok("Hallo Welt")])
    client = make_client(engine, ClientConfig(max_retries=2))

    result = await client.execute(request_de)

    assert result.success
    assert result.meta.fallback == "simplified-prompt"
    assert result.meta.retry_count == 3
    assert engine.calls[-1].system_prompt == prompts.simplified_prompt("de")


@pytest.mark.asyncio
async def test_model_fallback_overrides_model(request_de: TranslationRequest) -> None:
    engine = ScriptedEngine([fail(), ok("Hallo Welt")])
    client = make_client(
        engine, ClientConfig(max_retries=0), fallbacks=[ModelFallback("backup-model")]
    )

    result = await client.execute(request_de)

    assert result.meta.fallback == "model"
    assert engine.calls[0].model is None
    assert engine.calls[1].model == "backup-model"


@pytest.mark.asyncio
async def test_per_call_fallbacks_replace_configured_chain(
    request_de: TranslationRequest,
) -> None:
    engine = ScriptedEngine([fail(), ok("kurz")])
    client = make_client(engine, ClientConfig(max_retries=0))
    step = StaticFallback("short-text", RequestOverrides(text="Hello"))

    result = await client.execute(request_de, fallbacks=[step])

    assert result.meta.fallback == "short-text"
    assert engine.calls[1].text == "Hello"


@pytest.mark.asyncio
async def test_every_attempt_is_reported_to_the_monitor(
    request_de: TranslationRequest,
) -> None:
    monitor = ApiMonitor()
    engine = ScriptedEngine([fail(503), fail(503), ok("Hallo")])
    client = make_client(engine, ClientConfig(max_retries=2), monitor=monitor)

    await client.execute(request_de)

    metrics = monitor.get_api_metrics(OPERATION)
    assert metrics is not None
    assert metrics.totals.total == 3
    assert metrics.totals.failure == 2
    assert metrics.windows["1m"].status_counts == {"503": 2, "200": 1}


@pytest.mark.asyncio
async def test_concurrent_identical_requests_make_one_call(
    request_de: TranslationRequest,
) -> None:
    engine = ScriptedEngine(delay=0.01)
    client = make_client(engine)

    results = await asyncio.gather(*(client.execute(request_de) for _ in range(5)))

    assert len(engine.calls) == 1
    assert {r.text for r in results} == {"<<Hello world>>"}


@pytest.mark.asyncio
async def test_hung_call_is_converted_to_timeout_failure(
    request_de: TranslationRequest,
) -> None:
    monitor = ApiMonitor()
    engine = ScriptedEngine(delay=1.0)
    client = make_client(
        engine,
        ClientConfig(max_retries=0, request_timeout=0.01),
        monitor=monitor,
        fallbacks=[],
    )

    result = await client.execute(request_de)

    assert result.success is False
    assert result.text == "Hello world"
    metrics = monitor.get_api_metrics(OPERATION)
    assert metrics is not None
    assert metrics.windows["1m"].status_counts == {"timeout": 1}


@pytest.mark.asyncio
async def test_empty_text_short_circuits(request_de: TranslationRequest) -> None:
    engine = ScriptedEngine()
    result = await make_client(engine).execute(
        TranslationRequest(text="", target_language="de")
    )
    assert result.success and result.is_original and result.text == ""
    assert engine.calls == []


@pytest.mark.asyncio
async def test_malformed_request_raises_type_error() -> None:
    client = make_client(ScriptedEngine())
    with pytest.raises(TypeError):
        await client.execute({"text": "Hello", "target_language": "de"})  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_cache_sweeper_stops_when_event_is_set() -> None:
    client = make_client(ScriptedEngine(), ClientConfig(cache_sweep_interval=0.01))
    stop = asyncio.Event()
    sweeper = asyncio.create_task(client.sweep_periodically(stop))
    await asyncio.sleep(0.03)
    stop.set()
    await asyncio.wait_for(sweeper, timeout=1)
    assert sweeper.done()


@pytest.mark.asyncio
async def test_cached_result_expires_after_ttl(request_de: TranslationRequest) -> None:
    clock = FakeClock()
    engine = ScriptedEngine([ok("Hallo Welt"), ok("Hallo, Welt")])
    client = make_client(engine, cache=ResultCache(ttl=10, timer=clock))

    await client.execute(request_de)
    clock.advance(5)
    cached = await client.execute(request_de)
    assert cached.meta.cache_hit is True
    assert len(engine.calls) == 1

    clock.advance(6)
    fresh = await client.execute(request_de)
    assert fresh.meta.cache_hit is False
    assert fresh.text == "Hallo, Welt"
    assert len(engine.calls) == 2
