"""单轮抽取编排器。

编排器持有跨轮的资源：事件存储、限流器、生成器、提示词冷却、遥测与运行历史。
每轮调用 ``process_turn`` 时构造本轮上下文，交给单轮抽取图执行。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from langchain_core.language_models import BaseChatModel

from lorekeeper.config.settings import ExtractionSettings
from lorekeeper.extractors.base import TurnContext
from lorekeeper.extractors.initial import InitialSnapshotExtractor
from lorekeeper.extractors.parse import PromptBackoff
from lorekeeper.extractors.registry import Phase
from lorekeeper.generator.base import Generator, GeneratorAbortError
from lorekeeper.generator.chat_model import LangChainGenerator
from lorekeeper.generator.rate_limiter import RateLimiter
from lorekeeper.graph.turn_graph import RunHistory, TurnResources, compile_turn_graph
from lorekeeper.lore import LoreProvider
from lorekeeper.models.chat import ChatContext
from lorekeeper.models.event import Event
from lorekeeper.models.snapshot import Source
from lorekeeper.state.event_store import EventStore, resolve_swipe_safely
from lorekeeper.state.turn_state import ExtractorFailure, SkipRecord
from lorekeeper.utils.tracker import ExtractionTracker

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """一轮抽取的结果。"""

    source: Source
    events: list[Event] = field(default_factory=list)
    failures: list[ExtractorFailure] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)
    unresolved_names: list[str] = field(default_factory=list)
    aborted: bool = False
    initial_snapshot_created: bool = False

    @property
    def message_id(self) -> int:
        return self.source.message_id

    @property
    def active_events(self) -> list[Event]:
        return [e for e in self.events if not e.deleted]


class TurnOrchestrator:
    """按轮驱动抽取。

    Args:
        settings: 抽取配置。
        model: langchain 聊天模型；与 generator 二选一。
        generator: 直接提供的生成器（测试时注入），提供后不再包装 model。
        store: 事件存储，默认新建空存储。
        lore: 世界书匹配器。
        tracker: 遥测跟踪器，默认新建。
        phases: 抽取阶段，默认内置注册表。
    """

    def __init__(
        self,
        settings: ExtractionSettings | None = None,
        model: BaseChatModel | None = None,
        generator: Generator | None = None,
        store: EventStore | None = None,
        lore: LoreProvider | None = None,
        tracker: ExtractionTracker | None = None,
        phases: list[Phase] | None = None,
        backoff: PromptBackoff | None = None,
    ):
        if model is None and generator is None:
            raise ValueError("必须提供 model 或 generator")
        self.settings = settings or ExtractionSettings()
        self.store = store or EventStore()
        self.lore = lore
        self.tracker = tracker or ExtractionTracker()
        self.backoff = backoff or PromptBackoff()
        self.history = RunHistory()
        self.initial_extractor = InitialSnapshotExtractor()
        self._model = model
        self._custom_generator = generator
        self._rate_limiter: RateLimiter | None = None
        self._generator: Generator | None = None
        self._graph = compile_turn_graph(phases)

    # ── 资源 ──

    @property
    def rate_limiter(self) -> RateLimiter:
        """限流器只在 max_requests_per_minute 变化时重建。"""
        rpm = self.settings.max_requests_per_minute
        if self._rate_limiter is None or self._rate_limiter.max_requests_per_minute != rpm:
            if self._rate_limiter is not None:
                logger.info("限流配置变化，重建限流器: %d rpm", rpm)
            self._rate_limiter = RateLimiter(rpm)
            self._generator = None
        return self._rate_limiter

    @property
    def generator(self) -> Generator:
        if self._custom_generator is not None:
            return self._custom_generator
        limiter = self.rate_limiter
        if self._generator is None:
            self._generator = LangChainGenerator(self._model, limiter)
        return self._generator

    def update_settings(self, settings: ExtractionSettings) -> None:
        self.settings = settings

    def _context(
        self, chat: ChatContext, source: Source, abort_signal: asyncio.Event | None
    ) -> TurnContext:
        return TurnContext(
            generator=self.generator,
            chat=chat,
            settings=self.settings,
            store=self.store,
            current_message=source,
            lore=self.lore,
            abort_signal=abort_signal,
            tracker=self.tracker,
            backoff=self.backoff,
        )

    # ── 单轮 ──

    async def process_turn(
        self,
        chat: ChatContext,
        message_id: int,
        swipe_id: int | None = None,
        abort_signal: asyncio.Event | None = None,
    ) -> ExtractionResult:
        """处理一条消息。

        存储尚无基线时只建立初始快照，不产出事件。
        """
        if not 0 <= message_id < len(chat.chat):
            raise IndexError(f"消息序号越界: {message_id}")
        if swipe_id is None:
            swipe_id = resolve_swipe_safely(chat.get_canonical_swipe_id, message_id)
        source = Source(message_id=message_id, swipe_id=swipe_id)
        ctx = self._context(chat, source, abort_signal)

        if not self.store.has_initial_snapshot:
            return await self._extract_initial(ctx)

        if any(
            e.source == source and not e.deleted for e in self.store.get_active_events()
        ):
            logger.warning("消息 %d (swipe %d) 已有事件，重复抽取会追加新事件", message_id, swipe_id)

        resources = TurnResources(ctx=ctx, history=self.history)
        final = await self._graph.ainvoke(
            {
                "turn_events": [],
                "retracted": [],
                "failures": [],
                "skipped": [],
                "unresolved_names": [],
                "aborted": False,
                "committed": 0,
            },
            config={"configurable": {"turn": resources}},
        )

        committed_ids = {e.id for e in final.get("turn_events", [])}
        result = ExtractionResult(
            source=source,
            events=[e for e in self.store.events if e.id in committed_ids],
            failures=list(final.get("failures", [])),
            skipped=list(final.get("skipped", [])),
            unresolved_names=list(dict.fromkeys(final.get("unresolved_names", []))),
            aborted=bool(final.get("aborted", False)),
        )
        for failure in result.failures:
            if not failure.cancelled:
                target = f"[{failure.target}]" if failure.target else ""
                logger.error("抽取器 %s%s 失败: %s", failure.extractor, target, failure.error)
        logger.info(
            "消息 %d 抽取完成: %d 条事件，%d 个失败%s",
            message_id,
            len(result.active_events),
            len(result.failures),
            "（已取消）" if result.aborted else "",
        )
        return result

    async def _extract_initial(self, ctx: TurnContext) -> ExtractionResult:
        result = ExtractionResult(source=ctx.current_message)
        name = self.initial_extractor.name
        self.tracker.record_attempt(name)
        try:
            snapshot = await self.initial_extractor.extract(ctx)
        except GeneratorAbortError as e:
            self.tracker.record_cancel(name, ctx.message_id)
            result.aborted = True
            result.failures.append(ExtractorFailure(name, None, str(e), cancelled=True))
            return result
        if snapshot is None:
            result.failures.append(ExtractorFailure(name, None, "初始快照抽取失败"))
            logger.error("消息 %d: 初始快照抽取失败，下一轮将重试", ctx.message_id)
            return result
        self.tracker.record_completed(name, ctx.message_id, 0)
        self.store.replace_initial_snapshot(snapshot)
        result.initial_snapshot_created = True
        return result

    # ── 整段对话 ──

    def next_message_to_process(self) -> int:
        """存储中已处理到的位置之后的第一条消息。"""
        marks = [self.store.last_message_id()]
        marks += [max(v) for v in self.history.ran_at.values() if v]
        processed = [m for m in marks if m is not None]
        return max(processed) + 1 if processed else 0

    async def process_chat(
        self,
        chat: ChatContext,
        start: int | None = None,
        end: int | None = None,
        abort_signal: asyncio.Event | None = None,
        on_turn: Callable[[ExtractionResult], None] | None = None,
    ) -> list[ExtractionResult]:
        """依次处理 [start, end] 内的消息，跳过系统消息；取消后停止。"""
        start = self.next_message_to_process() if start is None else start
        end = len(chat.chat) - 1 if end is None else min(end, len(chat.chat) - 1)
        results: list[ExtractionResult] = []
        for message_id in range(start, end + 1):
            if chat.chat[message_id].is_system:
                continue
            result = await self.process_turn(chat, message_id, abort_signal=abort_signal)
            results.append(result)
            if on_turn is not None:
                on_turn(result)
            if result.aborted:
                logger.info("抽取已取消，停止于消息 %d", message_id)
                break
        return results
