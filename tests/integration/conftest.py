# tests/integration/conftest.py
"""为集成测试提供基于临时 SQLite 文件的存储与配置。"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from trans_gate.config import PersistenceConfig
from trans_gate.persistence import SQLAlchemyMetricsStore


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'metrics.db'}"


@pytest.fixture
def persistence_config(tmp_path: Path, database_url: str) -> PersistenceConfig:
    return PersistenceConfig(
        enabled=True,
        database_url=database_url,
        dump_dir=str(tmp_path / "dumps"),
        instance_id="instance-a",
        interval_ms=60 * 60 * 1000,
    )


@pytest_asyncio.fixture
async def store(database_url: str) -> AsyncGenerator[SQLAlchemyMetricsStore, None]:
    """提供一个已建表的存储实例，测试结束后释放引擎。"""
    store = SQLAlchemyMetricsStore.from_url(database_url)
    await store.create_all()
    yield store
    await store.close()
