"""Lorekeeper CLI 入口。"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from lorekeeper.config.settings import ModelConfig, load_settings
from lorekeeper.graph.orchestrator import ExtractionResult, TurnOrchestrator
from lorekeeper.lore import KeywordLoreProvider
from lorekeeper.models.chat import ChatContext
from lorekeeper.models.lore import LoreEntry
from lorekeeper.models.snapshot import Snapshot
from lorekeeper.output.manager import OutputManager
from lorekeeper.utils.tracker import ExtractionTracker

console = Console()
logger = logging.getLogger("lorekeeper")


def _init_model(model_config: ModelConfig):
    """根据配置初始化 LLM。"""
    provider = model_config.provider.lower()

    if provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI
        kwargs: dict = {
            "model": model_config.model_name,
            "temperature": model_config.temperature,
            "max_output_tokens": model_config.max_tokens,
        }
        if model_config.api_key:
            kwargs["google_api_key"] = model_config.api_key
        return ChatGoogleGenerativeAI(**kwargs)
    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=model_config.model_name,
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
            api_key=os.environ.get("OPENAI_API_KEY", model_config.api_key) or None,
        )
    else:
        # 通过 langchain 的通用接口
        from langchain.chat_models import init_chat_model

        return init_chat_model(
            f"{provider}:{model_config.model_name}",
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
        )


def _load_chat(path: str) -> ChatContext:
    chat_path = Path(path)
    if not chat_path.exists():
        console.print(f"[red]对话文件不存在: {chat_path}[/red]")
        sys.exit(1)
    return ChatContext.model_validate_json(chat_path.read_text(encoding="utf-8"))


def _load_lore(path: str | None) -> KeywordLoreProvider | None:
    if not path:
        return None
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    # 兼容 {"entries": {...}} 形式的世界书导出
    if isinstance(data, dict):
        entries = data.get("entries", {})
        data = list(entries.values()) if isinstance(entries, dict) else entries
    return KeywordLoreProvider(LoreEntry.model_validate(e) for e in data)


# ────────────────────────────────────────────
# extract
# ────────────────────────────────────────────


def cmd_extract(args: argparse.Namespace) -> None:
    """逐条抽取对话，结果增量写入输出目录。"""
    chat = _load_chat(args.chat)
    settings = load_settings(args.settings)
    chat_name = Path(args.chat).stem
    output_dir = Path(args.output) / chat_name
    output_mgr = OutputManager(output_dir, chat_name=chat_name)

    store = output_mgr.load_store() if output_mgr.has_store() else None
    tracker = ExtractionTracker()
    orchestrator = TurnOrchestrator(
        settings=settings,
        model=_init_model(settings.model),
        store=store,
        lore=_load_lore(args.lore),
        tracker=tracker,
    )

    start = args.start
    if start is None:
        last = output_mgr.last_processed_message
        start = 0 if last is None else last + 1

    console.print(Panel(
        f"对话: [bold]{chat_name}[/bold]（{len(chat.chat)} 条消息）\n"
        f"模型: {settings.model.provider}:{settings.model.model_name}\n"
        f"起始消息: {start}",
        title="Lorekeeper Extract",
    ))

    def on_turn(result: ExtractionResult) -> None:
        output_mgr.save_store(orchestrator.store)
        if not result.aborted:
            snapshot = orchestrator.store.project_state_at_message(
                result.message_id,
                result.source.swipe_id,
                chat.get_canonical_swipe_id,
            )
            if snapshot is not None:
                output_mgr.save_projection(snapshot)
        output_mgr.record_turn(
            result.message_id,
            result.source.swipe_id,
            len(result.active_events),
            failures=len(result.failures),
            aborted=result.aborted,
        )
        status = "[yellow]已取消[/yellow]" if result.aborted else "[green]完成[/green]"
        console.print(
            f"  消息 {result.message_id}: {status} "
            f"{len(result.active_events)} 条事件，{len(result.failures)} 个失败"
        )

    results = asyncio.run(_run_extraction(orchestrator, chat, start, args.end, on_turn))

    output_mgr.save_telemetry(tracker.summary())
    _print_telemetry(tracker)
    total = sum(len(r.active_events) for r in results)
    console.print(f"[bold green]抽取结束: {len(results)} 轮，{total} 条事件 → {output_dir}[/bold green]")


async def _run_extraction(
    orchestrator: TurnOrchestrator,
    chat: ChatContext,
    start: int,
    end: int | None,
    on_turn,
) -> list[ExtractionResult]:
    """Ctrl-C 触发取消信号，当前轮已完成的部分仍会提交。"""
    abort_signal = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, abort_signal.set)
    except NotImplementedError:
        logger.debug("当前平台不支持信号处理，Ctrl-C 将直接中断")
    try:
        return await orchestrator.process_chat(
            chat, start=start, end=end, abort_signal=abort_signal, on_turn=on_turn
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


def _print_telemetry(tracker: ExtractionTracker) -> None:
    table = Table(title="抽取器统计", show_lines=False)
    table.add_column("抽取器", style="cyan")
    table.add_column("调用", justify="right")
    table.add_column("重试", justify="right")
    table.add_column("失败", justify="right", style="red")
    table.add_column("取消", justify="right", style="yellow")
    table.add_column("事件", justify="right", style="green")
    table.add_column("跳过", style="dim")

    for name, stats in sorted(tracker.get_stats().items()):
        skipped = ", ".join(f"{k}:{v}" for k, v in sorted(stats.skipped.items()))
        table.add_row(
            name,
            str(stats.attempts),
            str(stats.retries),
            str(stats.failures),
            str(stats.cancellations),
            str(stats.events_produced),
            skipped or "-",
        )
    console.print(table)


# ────────────────────────────────────────────
# show / events
# ────────────────────────────────────────────


def cmd_show(args: argparse.Namespace) -> None:
    """回放并展示某条消息处的叙事状态。"""
    output_mgr = OutputManager(Path(args.output))
    if not output_mgr.has_store():
        console.print(f"[red]目录中没有事件存储: {args.output}[/red]")
        sys.exit(1)
    store = output_mgr.load_store()
    message_id = args.message
    if message_id is None:
        message_id = store.last_message_id() or 0
    snapshot = store.project_state_at_message(message_id, args.swipe)
    if snapshot is None:
        console.print("[red]尚无初始快照[/red]")
        sys.exit(1)
    _print_snapshot(snapshot)


def _print_snapshot(snapshot: Snapshot) -> None:
    table = Table(title=f"叙事状态 @ 消息 {snapshot.source.message_id}", show_lines=True)
    table.add_column("项目", style="cyan", width=12)
    table.add_column("内容", style="white")

    if snapshot.time is not None:
        table.add_row("时间", snapshot.time.strftime("%Y-%m-%d %H:%M"))
    if snapshot.location is not None:
        loc = snapshot.location
        place = " / ".join(p for p in (loc.area, loc.place, loc.position) if p)
        table.add_row("地点", place or "-")
        table.add_row("道具", ", ".join(loc.props) or "-")
    if snapshot.climate is not None:
        temp = f"{snapshot.climate.temperature:.0f}°C " if snapshot.climate.temperature is not None else ""
        table.add_row("天气", f"{temp}{snapshot.climate.conditions}".strip() or "-")
    if snapshot.scene is not None:
        scene = snapshot.scene
        table.add_row(
            "场景",
            f"{scene.topic} | {scene.tone} | {scene.tension.level}/{scene.tension.type}/{scene.tension.direction}",
        )
    table.add_row("在场", ", ".join(snapshot.characters_present) or "-")
    table.add_row("章节", str(snapshot.current_chapter))
    console.print(table)

    char_table = Table(title="角色状态", show_lines=True)
    char_table.add_column("角色", style="cyan")
    char_table.add_column("位置/活动", style="white")
    char_table.add_column("情绪", style="yellow")
    char_table.add_column("身体", style="magenta")
    char_table.add_column("穿着", style="green")
    for name, state in snapshot.characters.items():
        outfit = ", ".join(f"{slot}:{item}" for slot, item in state.outfit.items() if item)
        char_table.add_row(
            name,
            " / ".join(p for p in (state.position, state.activity or "") if p) or "-",
            ", ".join(state.mood) or "-",
            ", ".join(state.physical_state) or "-",
            outfit or "-",
        )
    console.print(char_table)

    if snapshot.relationships:
        rel_table = Table(title="关系", show_lines=True)
        rel_table.add_column("角色对", style="cyan")
        rel_table.add_column("状态", style="yellow")
        rel_table.add_column("A→B", style="white")
        rel_table.add_column("B→A", style="white")
        rel_table.add_column("主题", style="dim")
        for rel in snapshot.relationships.values():
            rel_table.add_row(
                f"{rel.pair[0]} & {rel.pair[1]}",
                rel.status,
                ", ".join(rel.a_to_b.feelings) or "-",
                ", ".join(rel.b_to_a.feelings) or "-",
                ", ".join(rel.subjects) or "-",
            )
        console.print(rel_table)


def cmd_events(args: argparse.Namespace) -> None:
    """列出事件日志。"""
    output_mgr = OutputManager(Path(args.output))
    if not output_mgr.has_store():
        console.print(f"[red]目录中没有事件存储: {args.output}[/red]")
        sys.exit(1)
    store = output_mgr.load_store()
    events = store.events if args.all else store.get_active_events()
    if args.message is not None:
        events = [e for e in events if e.source.message_id == args.message]

    table = Table(title=f"事件日志（{len(events)} 条）")
    table.add_column("消息", justify="right", style="cyan")
    table.add_column("swipe", justify="right")
    table.add_column("类型", style="yellow")
    table.add_column("内容", style="white")
    table.add_column("撤销", style="red")
    for event in events:
        kind = event.kind if event.subkind is None else f"{event.kind}/{event.subkind}"
        payload = event.model_dump(
            mode="json", exclude={"id", "kind", "subkind", "source", "deleted", "timestamp"}
        )
        table.add_row(
            str(event.source.message_id),
            str(event.source.swipe_id),
            kind,
            json.dumps(payload, ensure_ascii=False),
            "✗" if event.deleted else "",
        )
    console.print(table)


def main() -> None:
    """CLI 主入口。"""
    from dotenv import load_dotenv
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="lorekeeper",
        description="Lorekeeper - 对话叙事状态抽取引擎",
    )
    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    extract_parser = subparsers.add_parser("extract", help="逐条抽取对话中的叙事状态事件")
    extract_parser.add_argument("chat", help="对话 JSON 文件路径")
    extract_parser.add_argument(
        "--output", "-o", default="output", help="输出目录（默认: output）"
    )
    extract_parser.add_argument("--settings", "-s", default=None, help="配置 YAML 路径")
    extract_parser.add_argument("--lore", default=None, help="世界书 JSON 路径")
    extract_parser.add_argument(
        "--start", type=int, default=None, help="起始消息（默认从上次进度继续）"
    )
    extract_parser.add_argument("--end", type=int, default=None, help="结束消息（默认到最后）")
    extract_parser.add_argument(
        "--verbose", "-v", action="store_true", help="详细日志输出"
    )

    show_parser = subparsers.add_parser("show", help="展示某条消息处的叙事状态")
    show_parser.add_argument("output", help="对话的输出目录（含 state/）")
    show_parser.add_argument("--message", "-m", type=int, default=None, help="消息序号（默认最后一条）")
    show_parser.add_argument("--swipe", type=int, default=None, help="目标消息的 swipe")

    events_parser = subparsers.add_parser("events", help="列出事件日志")
    events_parser.add_argument("output", help="对话的输出目录（含 state/）")
    events_parser.add_argument("--message", "-m", type=int, default=None, help="只看某条消息的事件")
    events_parser.add_argument("--all", action="store_true", help="包含已撤销的事件")

    args = parser.parse_args()

    # 配置日志
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )

    if args.command == "extract":
        cmd_extract(args)
    elif args.command == "show":
        cmd_show(args)
    elif args.command == "events":
        cmd_events(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
