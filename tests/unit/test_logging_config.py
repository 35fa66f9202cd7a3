# tests/unit/test_logging_config.py
"""测试日志系统的配置入口与 Rich 面板渲染器。"""

import logging
from collections.abc import Generator

import pytest
import structlog

from trans_gate.logging_config import APP_LOGGER_NAME, HybridPanelRenderer, setup_logging


@pytest.fixture
def restore_logging() -> Generator[None, None, None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    app_level = logging.getLogger(APP_LOGGER_NAME).level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger(APP_LOGGER_NAME).setLevel(app_level)


def test_json_format_ends_with_json_renderer(restore_logging: None) -> None:
    setup_logging(log_level="DEBUG", log_format="json")
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)
    assert logging.getLogger(APP_LOGGER_NAME).level == logging.DEBUG
    assert logging.getLogger().level == logging.WARNING


def test_console_format_ends_with_panel_renderer(restore_logging: None) -> None:
    setup_logging(log_level="warning", log_format="console")
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], HybridPanelRenderer)
    assert logging.getLogger(APP_LOGGER_NAME).level == logging.WARNING


def test_panel_renderer_includes_event_and_fields() -> None:
    renderer = HybridPanelRenderer(show_timestamp=False)
    output = renderer(
        None,
        "info",
        {"event": "请求完成", "level": "info", "logger": "trans_gate.client", "attempt": 2},
    )
    assert "请求完成" in output
    assert "attempt" in output
    assert "trans_gate.client" in output


def test_panel_renderer_skips_empty_events() -> None:
    assert HybridPanelRenderer()(None, "info", {"event": "  "}) == ""
