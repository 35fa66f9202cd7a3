# trans_gate/cli/db.py
"""处理指标数据库相关操作的 CLI 命令。"""

import asyncio

import structlog
import typer
from rich.console import Console

from trans_gate.cli.state import State
from trans_gate.config import PersistenceConfig
from trans_gate.exceptions import PersistenceError
from trans_gate.persistence import create_metrics_store

logger = structlog.get_logger(__name__)
console = Console()
db_app = typer.Typer(help="指标数据库管理命令")


async def _create_tables(config: PersistenceConfig) -> None:
    store = create_metrics_store(config)
    try:
        await store.create_all()
    finally:
        await store.close()


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """创建指标持久化所需的表（已存在则跳过）。"""
    state: State = ctx.obj
    database_url = state.config.persistence.database_url
    console.print(f"数据库: [cyan]{database_url}[/cyan]")
    try:
        asyncio.run(_create_tables(state.config.persistence))
    except PersistenceError as e:
        logger.error("指标表创建失败。", exc_info=True)
        console.print("[bold red]❌ 指标表创建失败！请检查日志获取详细信息。[/bold red]")
        raise typer.Exit(code=1) from e
    console.print("[bold green]✅ 指标表已就绪。[/bold green]")
