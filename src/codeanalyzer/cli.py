"""Code Analyzer CLI 入口

提供工作记忆文档与协调日志的命令行操作接口。
"""

import asyncio
import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from codeanalyzer.core.config import get_settings
from codeanalyzer.core.exceptions import StorageError


# ==================== 全局状态 ====================


class CLIState:
    """CLI 全局状态"""

    output_dir: Path | None = None


state = CLIState()


def get_store():
    """获取工作记忆存储（根据全局状态）"""
    from codeanalyzer.infrastructure.working_memory import WorkingMemoryStore

    return WorkingMemoryStore(state.output_dir or get_settings().output_dir)


def configure_logging(verbose: bool) -> None:
    """替换默认 sink，按配置级别输出到 stderr"""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else get_settings().log_level,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
    )


# ==================== CLI 应用 ====================


app = typer.Typer(
    name="code-analyzer",
    help="Code Analyzer - 多 Agent 仓库分析协调工具",
    add_completion=False,
)
console = Console()


@app.callback()
def main(
    output_dir: Annotated[
        Path | None,
        typer.Option(
            "--output-dir",
            "-o",
            help="工作记忆文档目录（默认使用配置中的 output_dir）",
            envvar="CODE_ANALYZER_OUTPUT_DIR",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="详细模式：显示 DEBUG 日志"),
    ] = False,
):
    """Code Analyzer CLI - 查看和操作 Agent 间的协调状态"""
    state.output_dir = output_dir
    configure_logging(verbose)


@app.command()
def ask(
    agent: str = typer.Argument(..., help="提问方 Agent"),
    target: str = typer.Argument(..., help="被提问方 Agent"),
    question: str = typer.Argument(..., help="问题内容"),
    context: str = typer.Option("", "--context", "-c", help="提问背景"),
    round_: int = typer.Option(1, "--round", "-r", min=1, help="协调轮次"),
):
    """向另一个 Agent 提问（写入提问方的工作记忆文档）"""
    from codeanalyzer.infrastructure.ledger_codec import Comment

    store = get_store()

    async def _ask() -> Comment:
        handle = await store.create_document(agent)
        comment = Comment(
            asking_agent=agent,
            target_agent=target,
            question=question,
            context=context,
            round=round_,
        )
        return await store.append_comment(handle, comment)

    try:
        comment = asyncio.run(_ask())
    except (StorageError, ValueError) as e:
        console.print(f"[red]错误: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]已记录问题[/green] {comment.id}: {agent} → {target}")


@app.command()
def status(
    agents: list[str] = typer.Argument(None, help="Agent 名称（默认全部）"),
):
    """显示各 Agent 台账中的问题与状态"""
    store = get_store()
    names = agents or store.discover_agents()
    if not names:
        console.print("[yellow]没有找到工作记忆文档[/yellow]")
        return

    async def _collect():
        return {
            name: await store.read_ledger(store.get_handle(name))
            for name in names
            if store.document_path(name).exists()
        }

    try:
        ledgers = asyncio.run(_collect())
    except (StorageError, ValueError) as e:
        console.print(f"[red]错误: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"协调台账 ({store.root})")
    table.add_column("ID", style="cyan")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Round", justify="right")
    table.add_column("Status")
    table.add_column("Question")

    pending = resolved = 0
    for comments in ledgers.values():
        for c in comments:
            if c.is_pending:
                pending += 1
                status_text = "[yellow]pending[/yellow]"
            else:
                resolved += 1
                status_text = "[green]resolved[/green]"
            table.add_row(c.id, c.asking_agent, c.target_agent, str(c.round), status_text, c.question)

    console.print(table)
    console.print(f"pending: {pending}, resolved: {resolved}")


@app.command()
def insights(
    agents: list[str] = typer.Argument(None, help="Agent 名称（默认全部）"),
):
    """输出协调情况汇总（Markdown）"""
    from codeanalyzer.coordination.insights import summarize_coordination

    try:
        result = asyncio.run(summarize_coordination(get_store(), agents or None))
    except (StorageError, ValueError) as e:
        console.print(f"[red]错误: {e}[/red]")
        raise typer.Exit(1)
    console.print(result.to_markdown(), markup=False)


@app.command()
def errors():
    """显示协调错误日志"""
    from codeanalyzer.infrastructure.error_log import CoordinationErrorLog, format_pair

    store = get_store()
    error_log = CoordinationErrorLog(get_settings().error_log_path(store.root), persist=False)
    entries = error_log.replay_entries()
    if not entries:
        console.print("[green]没有协调错误或超时记录[/green]")
        return

    table = Table(title="协调错误日志")
    table.add_column("Time", style="dim")
    table.add_column("Kind")
    table.add_column("Pair", style="cyan", no_wrap=True)
    table.add_column("Rounds", justify="right")
    table.add_column("Unresolved", justify="right")
    table.add_column("Detail")

    for entry in entries:
        detail = "\n".join(entry.detail) if isinstance(entry.detail, list) else entry.detail
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.kind.value,
            format_pair(entry.pair),
            str(entry.rounds_attempted),
            str(entry.unresolved_count),
            detail,
        )
    console.print(table)


if __name__ == "__main__":
    app()
