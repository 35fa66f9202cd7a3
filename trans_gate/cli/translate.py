# trans_gate/cli/translate.py
"""处理单条文本翻译的 CLI 命令。"""

import asyncio
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.json import JSON
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from trans_gate.cli.state import State
from trans_gate.cli.utils import create_coordinator, metrics_table
from trans_gate.coordinator import Coordinator
from trans_gate.monitoring import OperationMetrics
from trans_gate.types import Strategy, TranslationRequest, TranslationResult

console = Console()


async def _async_translate(
    coordinator: Coordinator, request: TranslationRequest
) -> tuple[TranslationResult, list[OperationMetrics]]:
    try:
        await coordinator.initialize()
        result = await coordinator.translate(request)
        snapshot = coordinator.monitor.get_api_metrics()
        return result, snapshot if isinstance(snapshot, list) else []
    finally:
        await coordinator.close()


def translate(
    ctx: typer.Context,
    text: Annotated[str, typer.Argument(help="要翻译的文本（纯文本或 HTML）。")],
    target_language: Annotated[
        str, typer.Option("--to", "-t", help="目标语言代码，如 zh-CN。")
    ],
    strategy: Annotated[
        Optional[Strategy],
        typer.Option("--strategy", "-s", help="强制使用的执行策略（默认自动选择）。"),
    ] = None,
    engine: Annotated[
        Optional[str], typer.Option("--engine", "-e", help="临时覆盖活动引擎。")
    ] = None,
    as_json: Annotated[
        bool, typer.Option("--json", help="以 JSON 输出完整结果。")
    ] = False,
    show_stats: Annotated[
        bool, typer.Option("--stats", help="同时输出本次运行的 API 指标。")
    ] = False,
) -> None:
    """翻译一段文本并输出结果。"""
    try:
        request = TranslationRequest(
            text=text, target_language=target_language, strategy_hint=strategy
        )
    except ValueError as e:
        console.print(f"[bold red]❌ 请求参数错误: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    state: State = ctx.obj
    coordinator = create_coordinator(state.config, engine)
    try:
        result, metrics = asyncio.run(_async_translate(coordinator, request))
    except Exception as e:
        console.print(f"[bold red]❌ 翻译失败: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1) from e

    if as_json:
        console.print(JSON(result.model_dump_json()))
    else:
        style = "green" if result.success else "red"
        subtitle = f"strategy={result.meta.strategy} retries={result.meta.retry_count}"
        if result.meta.quality_flag:
            subtitle += f" quality={result.meta.quality_flag}"
        console.print(
            Panel(
                Text(result.text),
                title=f"[{style}]{'✅' if result.success else '❌'} {target_language}[/{style}]",
                subtitle=subtitle,
                border_style=style,
                expand=False,
            )
        )
        if result.error:
            console.print(f"[red]错误: {escape(result.error)}[/red]")
    if show_stats and metrics:
        console.print(metrics_table(metrics))
    if not result.success:
        raise typer.Exit(code=1)
