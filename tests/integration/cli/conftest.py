# tests/integration/cli/conftest.py
"""为 CLI 集成测试提供 Fixtures。"""

import pytest
from typer.testing import CliRunner


@pytest.fixture
def cli_runner() -> CliRunner:
    """提供一个 Typer CliRunner 实例用于模拟命令行调用。"""
    return CliRunner()


@pytest.fixture
def cli_env(monkeypatch: pytest.MonkeyPatch, database_url: str) -> str:
    """让 CLI 使用调试引擎与临时 SQLite 文件，并输出 JSON 日志。"""
    monkeypatch.setenv("TG_ENGINE__ACTIVE_ENGINE", "debug")
    monkeypatch.setenv("TG_PERSISTENCE__DATABASE_URL", database_url)
    monkeypatch.setenv("TG_LOGGING__FORMAT", "json")
    monkeypatch.setenv("TG_LOGGING__LEVEL", "WARNING")
    return database_url
