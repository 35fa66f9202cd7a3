# tests/integration/test_coordinator_e2e.py
"""使用调试引擎与真实 SQLite 文件的端到端测试。"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from trans_gate import Coordinator, Strategy, TransGateConfig, TranslationRequest
from trans_gate.config import EngineSettings, PersistenceConfig
from trans_gate.monitoring import ApiMonitor
from trans_gate.persistence import SQLAlchemyMetricsStore

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def coordinator(
    persistence_config: PersistenceConfig,
) -> AsyncGenerator[Coordinator, None]:
    config = TransGateConfig(
        engine=EngineSettings(active_engine="debug"),
        persistence=persistence_config,
    )
    coordinator = Coordinator(config, monitor=ApiMonitor())
    await coordinator.initialize()
    yield coordinator
    await coordinator.close()


@pytest.mark.asyncio
async def test_translate_plain_text(coordinator: Coordinator) -> None:
    result = await coordinator.translate(
        TranslationRequest(text="Hello", target_language="de")
    )
    assert result.success
    assert result.text == "[de] Hello"
    assert result.meta.strategy == Strategy.SIMPLE.value


@pytest.mark.asyncio
async def test_repeated_request_is_served_from_cache(coordinator: Coordinator) -> None:
    request = TranslationRequest(text="Hello again", target_language="fr")
    await coordinator.translate(request)
    second = await coordinator.translate(request)
    assert second.text == "[fr] Hello again"
    assert second.meta.cache_hit is True


@pytest.mark.asyncio
async def test_placeholders_survive_the_pipeline(coordinator: Coordinator) -> None:
    result = await coordinator.translate(
        TranslationRequest(text="Hi {name}, you have {count} messages", target_language="de")
    )
    assert result.success
    assert "{name}" in result.text and "{count}" in result.text


@pytest.mark.asyncio
async def test_metrics_are_persisted_by_the_writer(
    coordinator: Coordinator, database_url: str
) -> None:
    assert coordinator.persistence is not None
    await coordinator.translate(TranslationRequest(text="Hello", target_language="de"))

    await coordinator.persistence.persist_safe()

    store = SQLAlchemyMetricsStore.from_url(database_url)
    try:
        records = await store.recent_metrics()
    finally:
        await store.close()
    assert records
    assert records[0].instance_id == "instance-a"
    assert records[0].success >= 1


@pytest.mark.asyncio
async def test_initialize_and_close_are_idempotent(persistence_config: PersistenceConfig) -> None:
    config = TransGateConfig(
        engine=EngineSettings(active_engine="debug"),
        persistence=persistence_config.model_copy(update={"enabled": False}),
    )
    coordinator = Coordinator(config, monitor=ApiMonitor())
    await coordinator.initialize()
    await coordinator.initialize()
    assert coordinator.engine.name == "debug"
    assert coordinator.persistence is None

    await coordinator.close()
    await coordinator.close()
    assert coordinator.initialized is False
