"""抽取器契约。

抽取器是无状态的任务描述：身份（名称、类别、默认温度）、触发判断 ``should_run``
以及异步生产者 ``run``。三种形态：

- EventExtractor: 每轮调用一次；
- PerCharacterExtractor: 对每个在场角色各调用一次；
- PerPairExtractor: 对在场角色的每个无序对各调用一次。

生产者内部吞掉所有失败（返回空列表并记录日志），只有取消会向上抛出。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from pydantic import BaseModel

from lorekeeper.config.settings import Category, ExtractionSettings
from lorekeeper.extractors.formatting import window_texts
from lorekeeper.extractors.parse import PromptBackoff, generate_and_parse
from lorekeeper.extractors.strategies import (
    EveryMessage,
    FixedNumber,
    MessageStrategy,
    RunContext,
    RunStrategy,
    evaluate_run_strategy,
)
from lorekeeper.extractors.window import MessageRange, select_message_range
from lorekeeper.generator.base import Generator, GeneratorPrompt
from lorekeeper.lore import LoreProvider, fetch_lore_text
from lorekeeper.models.chat import ChatContext
from lorekeeper.models.event import BaseEvent, Event
from lorekeeper.models.snapshot import Snapshot, Source
from lorekeeper.prompts import load_prompt
from lorekeeper.state.event_store import EventStore, project_with_turn_events
from lorekeeper.utils.tracker import ExtractionTracker

logger = logging.getLogger(__name__)


@dataclass
class TurnContext:
    """单轮抽取共享的资源。"""

    generator: Generator
    chat: ChatContext
    settings: ExtractionSettings
    store: EventStore
    current_message: Source
    lore: LoreProvider | None = None
    abort_signal: asyncio.Event | None = None
    tracker: ExtractionTracker | None = None
    backoff: PromptBackoff | None = None

    @property
    def message_id(self) -> int:
        return self.current_message.message_id

    def projection(self, turn_events: Sequence[Event] = ()) -> Snapshot:
        """当前消息处的投影（含本轮已产出事件）。"""
        snapshot = project_with_turn_events(
            self.store, turn_events, self.current_message, self.chat.get_canonical_swipe_id
        )
        return snapshot or Snapshot(source=self.current_message.model_copy())

    def run_context(
        self,
        turn_events: Sequence[Event],
        ran_at_messages: Sequence[int] = (),
        produced_at_messages: Sequence[int] = (),
    ) -> RunContext:
        return RunContext(
            store=self.store,
            chat=self.chat,
            settings=self.settings,
            current_message=self.current_message,
            turn_events=tuple(turn_events),
            ran_at_messages=tuple(ran_at_messages),
            produced_at_messages=tuple(produced_at_messages),
        )


class BaseExtractor:
    """三种抽取器形态的公共部分。"""

    name: ClassVar[str] = ""
    category: ClassVar[Category] = "scene"
    default_temperature: ClassVar[float] = 0.5
    message_strategy: ClassVar[MessageStrategy] = FixedNumber(2)
    run_strategy: ClassVar[RunStrategy] = EveryMessage()
    response_model: ClassVar[type[BaseModel]]

    @property
    def prompt_name(self) -> str:
        return self.name

    def should_run(self, context: RunContext) -> bool:
        if not context.settings.track.is_enabled(self.category):
            return False
        return evaluate_run_strategy(self.run_strategy, context)

    def system_prompt(self, settings: ExtractionSettings) -> str:
        custom = settings.custom_prompts.get(self.name, "").strip()
        return custom or load_prompt(self.prompt_name)

    def temperature(self, settings: ExtractionSettings) -> float:
        return settings.temperature_for(self.prompt_name, self.category, self.default_temperature)

    def message_range(self, ctx: TurnContext) -> MessageRange:
        return select_message_range(
            self.message_strategy,
            ctx.store,
            ctx.current_message,
            ctx.settings,
            self.name,
            swipe_resolver=ctx.chat.get_canonical_swipe_id,
        )

    async def lore_text(
        self,
        ctx: TurnContext,
        window: MessageRange,
        character: str | None = None,
        pair: tuple[str, str] | None = None,
    ) -> str:
        if not ctx.settings.include_lore:
            return ""
        return await fetch_lore_text(ctx.lore, window_texts(ctx.chat, window), character, pair)

    async def ask(self, ctx: TurnContext, user_prompt: str, target: str | None = None) -> Any:
        """调用生成器并返回校验后的回复模型；失败返回 None。"""
        prompt = GeneratorPrompt.from_pair(self.system_prompt(ctx.settings), user_prompt)
        result = await generate_and_parse(
            ctx.generator,
            prompt,
            self.response_model,
            temperature=self.temperature(ctx.settings),
            max_tokens=ctx.settings.max_tokens,
            abort_signal=ctx.abort_signal,
            max_retries=ctx.settings.max_retries,
            retry_temperature=ctx.settings.retry_temperature,
            prompt_name=self.prompt_name,
            backoff=ctx.backoff,
            tracker=ctx.tracker,
            tracker_name=self.name,
        )
        if not result.success:
            label = f"{self.name}[{target}]" if target else self.name
            logger.warning("%s 抽取失败，本轮不产出事件: %s", label, result.error)
            if ctx.tracker is not None:
                ctx.tracker.record_failure(self.name, ctx.message_id, result.error or "", target)
            return None
        return result.data

    @staticmethod
    def make(ctx: TurnContext, event_cls: type[BaseEvent], **fields: Any) -> Any:
        """以当前消息为来源创建新事件。"""
        return event_cls(source=ctx.current_message.model_copy(), **fields)


class EventExtractor(BaseExtractor):
    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        raise NotImplementedError


class PerCharacterExtractor(BaseExtractor):
    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], target_character: str
    ) -> list[Event]:
        raise NotImplementedError


class PerPairExtractor(BaseExtractor):
    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], pair: tuple[str, str]
    ) -> list[Event]:
        raise NotImplementedError
