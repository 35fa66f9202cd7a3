# trans_gate/cli/main.py
"""Trans-Gate CLI 的主入口点。"""

from typing import Annotated

import typer
from rich.console import Console

import trans_gate
from trans_gate.cli.db import db_app
from trans_gate.cli.metrics import metrics_app
from trans_gate.cli.state import State
from trans_gate.cli.translate import translate
from trans_gate.config import TransGateConfig
from trans_gate.engine_registry import discover_engines
from trans_gate.logging_config import setup_logging

app = typer.Typer(
    name="trans-gate",
    help="🛡️ Trans-Gate: 带保护、分块、重试与质量门的 LLM 翻译管线。",
    add_completion=False,
    no_args_is_help=True,
)

app.command("translate")(translate)
app.add_typer(db_app, name="db")
app.add_typer(metrics_app, name="metrics")

console = Console()


def version_callback(value: bool) -> None:
    """处理 --version 选项的回调函数。"""
    if value:
        console.print(f"Trans-Gate [bold cyan]v{trans_gate.__version__}[/bold cyan]")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="显示版本信息并退出。",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """主回调函数，在任何子命令执行前运行：先配置日志，再发现引擎。"""
    try:
        config = TransGateConfig()
        setup_logging(log_level=config.logging.level, log_format=config.logging.format)
        discover_engines()
        ctx.obj = State(config=config)
    except Exception as e:
        console.print("[bold red]❌ 启动失败：无法加载配置或初始化日志。[/bold red]")
        console.print(f"[dim]{e}[/dim]")
        raise typer.Exit(code=1) from e
