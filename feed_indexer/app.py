"""Typer CLI entrypoint for Feed-Indexer."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from typer import BadParameter

from .config import ConfigRepository, GlobalConfig, SortMode
from .coordinator import Coordinator
from .engine import ItemStore, PlaywrightFeedHost, SearchEngine, SearchQuery, decode_timeline_payload
from .engine.detect import handle_from_path
from .engine.models import Item, SearchResult, SourceSummary
from .errors import FeedIndexerError
from .infra import SQLiteManager
from .logging_conf import (
    available_source_logs,
    configure_logging,
    log_dir,
    source_log_path,
    source_logger,
    tail_log,
)
from .ui import IndexingMonitor, ProgressActivity

app = typer.Typer(
    help="Feed-Indexer 命令行工具：滚动采集信息流并本地检索",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="日志查看命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)
app.add_typer(log_app, name="log", help="查看日志文件")

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config: GlobalConfig
    storage: SQLiteManager
    store: ItemStore
    search: SearchEngine


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    config = repository.load_global_config()
    storage = SQLiteManager()
    store = ItemStore(storage, repository.store_path())
    return AppState(
        repository=repository,
        config=config,
        storage=storage,
        store=store,
        search=SearchEngine(store),
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _parse_datetime_option(value: str, option_name: str) -> int:
    """Parse an ISO8601 option into epoch milliseconds (naive values are UTC)."""

    text = value.strip()
    if not text:
        raise BadParameter(f"{option_name} 不能为空。")
    normalized = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        candidate = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise BadParameter(
            f"{option_name} 需使用 ISO8601 时间，例如 2024-10-14T08:00+08:00。"
        ) from exc
    if candidate.tzinfo is None:
        candidate = candidate.replace(tzinfo=timezone.utc)
    return int(candidate.timestamp() * 1000)


def _format_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _render_highlight(text: str) -> str:
    return escape(text).replace("<mark>", "[bold yellow]").replace("</mark>", "[/bold yellow]")


def _render_results_table(query: str, results: Sequence[SearchResult]) -> Table:
    table = Table(title=f"“{query}” 检索结果 · 共 {len(results)} 条", box=box.SIMPLE_HEAD)
    table.add_column("得分", style="green", justify="right", no_wrap=True)
    table.add_column("来源", style="cyan", no_wrap=True)
    table.add_column("时间", style="magenta", no_wrap=True)
    table.add_column("赞", justify="right")
    table.add_column("内容", overflow="fold")
    for result in results:
        item = result.item
        table.add_row(
            f"{result.score:.1f}",
            f"@{item.source_handle}",
            _format_ms(item.timestamp),
            str(item.likes),
            _render_highlight(result.highlighted_text),
        )
    return table


def _render_sources_table(sources: Sequence[SourceSummary]) -> Table:
    table = Table(title=f"信息源总览 · 共 {len(sources)} 个", box=box.SIMPLE_HEAD)
    table.add_column("账号", style="cyan", no_wrap=True)
    table.add_column("名称")
    table.add_column("已索引", style="green", justify="right")
    table.add_column("时间跨度", style="magenta")
    table.add_column("状态", style="yellow")
    table.add_column("最近同步", style="dim")
    for summary in sources:
        table.add_row(
            f"@{summary.handle}",
            summary.display_name,
            str(summary.total_indexed),
            f"{_format_ms(summary.oldest_timestamp)} → {_format_ms(summary.newest_timestamp)}",
            summary.sync_status.value,
            _format_ms(summary.last_sync_at),
        )
    return table


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="开启调试日志", is_flag=True),
) -> None:
    ctx.obj = build_state(verbose)


@app.command("index", help="打开信息流页面并持续滚动，直到没有新内容。")
def index(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="账号主页地址，例如 https://x.com/someone"),
    min_delay: Optional[float] = typer.Option(None, "--min-delay", help="每步最短等待（毫秒）。"),
    max_delay: Optional[float] = typer.Option(None, "--max-delay", help="每步最长等待（毫秒）。"),
    distance: Optional[int] = typer.Option(None, "--distance", help="每步滚动距离。"),
    headful: bool = typer.Option(False, "--headful", help="显示浏览器窗口。", is_flag=True),
    quiet: bool = typer.Option(False, "--quiet", help="不显示进度。", is_flag=True),
) -> None:
    state = _get_state(ctx)
    handle = handle_from_path(url)
    if handle is None:
        console.print(f"无法从 {url} 识别账号主页。", style="red")
        raise typer.Exit(code=1)

    try:
        settings = state.repository.scroll_settings(
            min_delay_ms=min_delay, max_delay_ms=max_delay, scroll_distance=distance
        )
    except ValueError as exc:
        raise BadParameter(str(exc)) from exc
    browser_settings = state.repository.browser_settings(headful)

    host = PlaywrightFeedHost(url, browser_settings)
    coordinator = Coordinator(
        state.store,
        host,
        search=state.search,
        settings=settings,
        logger=source_logger(handle),
    )
    activity = ProgressActivity(enabled=not quiet and state.config.enable_progress_bar, console=console)
    monitor = IndexingMonitor(activity)
    coordinator.snapshots.subscribe(monitor.on_snapshot)
    coordinator.session.statuses.subscribe(monitor.on_state)
    coordinator.observe(url)
    activity.start(monitor.render())
    try:
        final_state = coordinator.run()
    except KeyboardInterrupt:
        final_state = None
    except FeedIndexerError as exc:
        console.print(f"索引失败：{exc}", style="red")
        raise typer.Exit(code=1)
    finally:
        activity.close()
        host.close()

    if final_state is None:
        console.print("已手动停止。", style="yellow")
    snapshot = coordinator.snapshot()
    label = final_state.value if final_state is not None else "stopped"
    console.print(
        f"@{handle} 结束（{label}）：本次处理 {snapshot.processed_count}，累计索引 {snapshot.indexed_count}",
        style="green",
    )


@app.command("search", help="按关键词检索已索引内容。")
def search(
    ctx: typer.Context,
    query: list[str] = typer.Argument(..., help="关键词，多个词同时命中。"),
    source: Optional[str] = typer.Option(None, "--source", help="仅检索指定账号。"),
    since: Annotated[
        Optional[str],
        typer.Option("--since", help="不早于该时间（ISO8601）。", metavar="TIMESTAMP", show_default=False),
    ] = None,
    until: Annotated[
        Optional[str],
        typer.Option("--until", help="不晚于该时间（ISO8601）。", metavar="TIMESTAMP", show_default=False),
    ] = None,
    media_only: bool = typer.Option(False, "--media-only", help="只看含图片的条目。", is_flag=True),
    min_likes: Optional[int] = typer.Option(None, "--min-likes", help="最少点赞数。"),
    sort: Optional[SortMode] = typer.Option(None, "--sort", help="排序：relevance/newest/oldest。"),
    limit: Optional[int] = typer.Option(None, "--limit", help="最多返回条数。"),
    as_json: bool = typer.Option(False, "--json", help="以 JSON 输出。", is_flag=True),
) -> None:
    state = _get_state(ctx)
    defaults = state.config.search
    text = " ".join(query)
    try:
        search_query = SearchQuery(
            query=text,
            source_handle=source,
            date_from=_parse_datetime_option(since, "--since") if since else None,
            date_to=_parse_datetime_option(until, "--until") if until else None,
            media_only=media_only,
            min_likes=min_likes,
            sort_by=sort or defaults.sort_by,
            limit=limit or defaults.limit,
        )
    except ValueError as exc:
        raise BadParameter(str(exc)) from exc
    try:
        results = state.search.search(search_query)
    except FeedIndexerError as exc:
        console.print(f"检索失败：{exc}", style="red")
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps([result.to_dict() for result in results], ensure_ascii=False, indent=2))
        return
    if not results:
        console.print("没有匹配的内容。", style="dim")
        return
    console.print(_render_results_table(text, results))


@app.command("sources", help="列出已索引的信息源。")
def sources(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    summaries = state.search.list_sources()
    if not summaries:
        console.print("暂无已索引的信息源，使用 `feed-indexer index <url>` 开始采集。", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_sources_table(summaries))


@app.command("show", help="查看单个信息源的统计。")
def show(ctx: typer.Context, handle: str = typer.Argument(..., help="账号名（不含 @）。")) -> None:
    state = _get_state(ctx)
    stats = state.search.profile_stats(handle.lstrip("@"))
    if stats.summary is None:
        console.print(f"未找到 @{handle.lstrip('@')} 的索引记录。", style="red")
        raise typer.Exit(code=1)
    console.print(_render_sources_table([stats.summary]))
    console.print(f"条目数：{stats.count}", style="dim")


@app.command("stats", help="查看本地存储概况。")
def stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    store_stats = state.store.stats()
    table = Table(title="存储概况", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("指标", style="cyan")
    table.add_column("数值", style="green", justify="right")
    table.add_row("条目", str(store_stats.item_count))
    table.add_row("信息源", str(store_stats.source_count))
    table.add_row("占用空间", _format_bytes(store_stats.estimated_bytes))
    console.print(table)


@app.command("purge", help="删除某个信息源的全部条目与统计。")
def purge(
    ctx: typer.Context,
    handle: str = typer.Argument(..., help="账号名（不含 @）。"),
    yes: bool = typer.Option(False, "--yes", help="跳过删除确认提示。", is_flag=True),
) -> None:
    state = _get_state(ctx)
    handle = handle.lstrip("@")
    if not yes:
        confirm = typer.confirm(f"确认删除 @{handle} 的全部索引内容？", default=False)
        if not confirm:
            console.print("已取消删除操作。", style="yellow")
            raise typer.Exit(code=0)
    try:
        removed = state.store.purge(handle)
    except FeedIndexerError as exc:
        console.print(f"删除失败：{exc}", style="red")
        raise typer.Exit(code=1)
    console.print(f"@{handle} 已删除，共清理 {removed} 条。", style="green")


@app.command("import", help="从 JSON 文件导入条目（时间线响应或条目列表）。")
def import_items(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON 文件路径。"),
    handle: str = typer.Option(..., "--handle", help="条目所属账号。"),
) -> None:
    state = _get_state(ctx)
    handle = handle.lstrip("@").lower()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"JSON 解析失败：{exc}", style="red")
        raise typer.Exit(code=1)
    if isinstance(payload, list):
        items: list[Item] = []
        for raw in payload:
            try:
                items.append(Item.from_payload(raw, handle))
            except (KeyError, TypeError, ValueError):
                continue
    else:
        items = decode_timeline_payload(payload, handle)
    coordinator = Coordinator(state.store, search=state.search, logger=source_logger(handle))
    try:
        response = coordinator.store_batch(items, handle)
    except FeedIndexerError as exc:
        console.print(f"导入失败：{exc}", style="red")
        raise typer.Exit(code=1)
    console.print(
        f"解析 {len(items)} 条，新增 {response.new_count} 条，@{handle} 累计 {response.indexed_count} 条。",
        style="green",
    )


@log_app.command("list", help="列出可用的日志文件。")
def log_list() -> None:
    paths = list(available_source_logs())
    if not paths:
        console.print("暂未生成任何信息源日志。", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("信息源", style="cyan")
    table.add_column("路径", style="dim", overflow="fold")
    for path in paths:
        table.add_row(path.stem, str(path))
    console.print(table)


@log_app.command("show", help="查看指定日志的最近内容。")
def log_show(
    name: Optional[str] = typer.Option(None, "--source", help="信息源账号（为空则展示全局日志）。"),
    tail: int = typer.Option(100, "--tail", help="查看最近 N 行。"),
) -> None:
    path = source_log_path(name) if name else log_dir() / "indexer.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("暂无日志信息，请稍后再试。", style="dim")
        return
    console.print(f"== {path} ==", style="cyan")
    console.print("".join(lines), markup=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
