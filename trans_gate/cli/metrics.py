# trans_gate/cli/metrics.py
"""查询已持久化的 API 指标快照。"""

import asyncio
from datetime import datetime
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from trans_gate.cli.state import State
from trans_gate.exceptions import PersistenceError
from trans_gate.persistence import MetricRecord, create_metrics_store

console = Console()
metrics_app = typer.Typer(help="查询已持久化的 API 指标")


async def _load_recent(state: State, operation: str | None, limit: int) -> list[MetricRecord]:
    store = create_metrics_store(state.config.persistence)
    try:
        await store.create_all()
        return await store.recent_metrics(operation=operation, limit=limit)
    finally:
        await store.close()


@metrics_app.command("recent")
def metrics_recent(
    ctx: typer.Context,
    operation: Annotated[
        Optional[str], typer.Option("--operation", "-o", help="只显示指定操作。")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="最多显示的行数。")] = 20,
) -> None:
    """按时间倒序显示最近的指标快照。"""
    state: State = ctx.obj
    try:
        records = asyncio.run(_load_recent(state, operation, limit))
    except PersistenceError as e:
        console.print(f"[bold red]❌ 读取指标失败: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    if not records:
        console.print("[yellow]⚠️ 没有已持久化的指标。[/yellow]")
        return

    table = Table(title="最近的指标快照")
    table.add_column("时间", style="dim")
    table.add_column("操作", style="cyan")
    table.add_column("成功", justify="right")
    table.add_column("失败", justify="right")
    table.add_column("失败率", justify="right")
    table.add_column("p95 (ms)", justify="right")
    table.add_column("实例")
    for r in records:
        table.add_row(
            datetime.fromtimestamp(r.timestamp / 1000).isoformat(timespec="seconds"),
            r.operation,
            str(r.success),
            str(r.failure),
            f"{r.failure_rate:.2%}",
            f"{r.p95:.1f}",
            r.instance_id,
        )
    console.print(table)
