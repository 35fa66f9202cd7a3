# trans_gate/cli/utils.py
"""提供 CLI 命令使用的共享工具函数。"""

from rich.table import Table

from trans_gate.config import TransGateConfig
from trans_gate.coordinator import Coordinator
from trans_gate.monitoring import OperationMetrics

_LEVEL_STYLES = {"none": "green", "warn": "yellow", "error": "bold red"}


def create_coordinator(
    config: TransGateConfig, engine_name: str | None = None
) -> Coordinator:
    """根据配置创建一个未初始化的 Coordinator；`engine_name` 可临时覆盖活动引擎。"""
    if engine_name:
        config = config.model_copy(
            update={
                "engine": config.engine.model_copy(update={"active_engine": engine_name})
            }
        )
    return Coordinator(config)


def metrics_table(metrics: list[OperationMetrics], title: str = "API 指标") -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("操作", style="cyan")
    table.add_column("总数", justify="right")
    table.add_column("失败率", justify="right")
    table.add_column("p95 (ms)", justify="right")
    table.add_column("失败告警")
    table.add_column("延迟告警")
    for m in metrics:
        table.add_row(
            m.operation,
            str(m.totals.total),
            f"{m.totals.failure_rate:.2%}",
            f"{m.p95_duration:.1f}",
            f"[{_LEVEL_STYLES[m.alerts.failure]}]{m.alerts.failure}[/]",
            f"[{_LEVEL_STYLES[m.alerts.latency]}]{m.alerts.latency}[/]",
        )
    return table
