# tests/unit/test_config.py
"""测试 `TransGateConfig` 的环境变量加载与各子模型的校验。"""

import pytest
from pydantic import ValidationError

from trans_gate.config import ClientConfig, PersistenceConfig, TransGateConfig


def test_defaults_are_usable_without_environment() -> None:
    config = TransGateConfig()
    assert config.client.max_retries == 2
    assert config.engine.active_engine == "openai"
    assert config.persistence.enabled is False
    assert config.orchestrator.long_text_threshold == 1500


def test_nested_environment_variables_are_loaded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TG_CLIENT__MAX_RETRIES", "5")
    monkeypatch.setenv("TG_ENGINE__ACTIVE_ENGINE", "debug")
    monkeypatch.setenv("TG_ENGINE__API_KEY", "sk-from-env")
    monkeypatch.setenv("TG_PERSISTENCE__INTERVAL_MS", "1000")

    config = TransGateConfig()

    assert config.client.max_retries == 5
    assert config.engine.active_engine == "debug"
    assert config.engine.api_key is not None
    assert config.engine.api_key.get_secret_value() == "sk-from-env"
    assert config.persistence.interval_ms == 1000


def test_backoff_cap_must_not_be_below_initial_delay() -> None:
    with pytest.raises(ValidationError):
        ClientConfig(retry_delay=5.0, max_retry_delay=1.0)


@pytest.mark.parametrize(
    "url",
    ["sqlite+aiosqlite:///metrics.db", "postgresql+asyncpg://u:p@localhost/db"],
)
def test_async_database_drivers_are_accepted(url: str) -> None:
    assert PersistenceConfig(database_url=url).database_url == url


@pytest.mark.parametrize(
    "url", ["sqlite:///metrics.db", "postgresql+psycopg2://u:p@localhost/db"]
)
def test_sync_database_drivers_are_rejected(url: str) -> None:
    with pytest.raises(ValidationError):
        PersistenceConfig(database_url=url)
