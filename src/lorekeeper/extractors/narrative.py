"""叙事层抽取器：天气预报、叙事事件、章节边界与章节描述。"""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import BaseModel, Field

from lorekeeper.extractors.base import EventExtractor, TurnContext
from lorekeeper.extractors.formatting import (
    build_user_prompt,
    format_location,
    format_messages,
    format_scene,
    format_time,
)
from lorekeeper.extractors.strategies import (
    Custom,
    FixedNumber,
    NewEventsOfKind,
    RunContext,
    SinceLastEventOfKind,
)
from lorekeeper.models.event import (
    ChapterDescribedEvent,
    ChapterEndedEvent,
    Event,
    ForecastGeneratedEvent,
    LocationMovedEvent,
    NarrativeDescriptionEvent,
    TimeDeltaEvent,
    kind_filter,
)
from lorekeeper.models.snapshot import ChapterEndReason, DailyForecast
from lorekeeper.state.event_store import project_with_turn_events
from lorekeeper.state.sets import contains_ci, dedupe_ci

logger = logging.getLogger(__name__)

FORECAST_DAYS = 7
CHAPTER_TIME_JUMP_SECONDS = 6 * 3600


def _live(turn_events: Sequence[Event]) -> list[Event]:
    return [e for e in turn_events if not e.deleted]


# ────────────────────────────────────────────
# 天气预报
# ────────────────────────────────────────────


def needs_forecast(context: RunContext) -> bool:
    """当前区域没有预报、且故事时间已知时需要生成预报。"""
    snapshot = project_with_turn_events(
        context.store, context.turn_events, context.current_message, context.chat.get_canonical_swipe_id
    )
    if snapshot is None or snapshot.time is None or snapshot.location is None:
        return False
    area = snapshot.location.area.strip()
    if not area:
        return False
    return not any(a.lower() == area.lower() for a in snapshot.forecasts)


class ForecastReply(BaseModel):
    reasoning: str = ""
    days: list[DailyForecast] = Field(default_factory=list)


class ForecastExtractor(EventExtractor):
    name = "forecast"
    category = "climate"
    default_temperature = 0.7
    message_strategy = FixedNumber(2)
    run_strategy = Custom(needs_forecast, "area without a forecast")
    response_model = ForecastReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        if projection.location is None or projection.time is None:
            return []
        area = projection.location.area.strip()
        climate = projection.climate.model_dump_json(exclude_none=True) if projection.climate else "unknown"
        user_prompt = build_user_prompt(
            ("Area", area),
            ("Location", format_location(projection)),
            ("Start date", projection.time.strftime("%Y-%m-%d")),
            ("Days", str(FORECAST_DAYS)),
            ("Current climate", climate),
            ("World info", await self.lore_text(ctx, self.message_range(ctx))),
        )
        reply: ForecastReply | None = await self.ask(ctx, user_prompt, area)
        if reply is None or not reply.days:
            return []
        return [
            self.make(ctx, ForecastGeneratedEvent, area_name=area, days=reply.days[:FORECAST_DAYS])
        ]


# ────────────────────────────────────────────
# 叙事事件
# ────────────────────────────────────────────


class NarrativeDescriptionReply(BaseModel):
    reasoning: str = ""
    occurred: bool = False
    description: str = ""
    witnesses: list[str] = Field(default_factory=list)


class NarrativeDescriptionExtractor(EventExtractor):
    """记录值得写进故事年表的事件。"""

    name = "narrative_description"
    category = "narrative"
    default_temperature = 0.6
    message_strategy = FixedNumber(2)
    response_model = NarrativeDescriptionReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        recent = [e.description for e in projection.narrative_events[-5:]]
        user_prompt = build_user_prompt(
            ("Story time", format_time(projection)),
            ("Location", format_location(projection)),
            ("Scene", format_scene(projection)),
            ("Characters present", ", ".join(projection.characters_present)),
            ("Recent narrative events", "\n".join(f"- {d}" for d in recent)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: NarrativeDescriptionReply | None = await self.ask(ctx, user_prompt)
        if reply is None or not reply.occurred or not reply.description.strip():
            return []
        witnesses = [w for w in dedupe_ci(reply.witnesses) if contains_ci(projection.characters_present, w)]
        place = projection.location.place if projection.location else ""
        return [
            self.make(
                ctx,
                NarrativeDescriptionEvent,
                description=reply.description.strip(),
                witnesses=witnesses,
                location=place,
            )
        ]


# ────────────────────────────────────────────
# 章节边界
# ────────────────────────────────────────────


def chapter_break_reason(turn_events: Sequence[Event]) -> ChapterEndReason | None:
    """本轮的地点移动或大幅时间跳跃构成章节边界的候选理由。"""
    live = _live(turn_events)
    moved = any(isinstance(e, LocationMovedEvent) for e in live)
    jumped = any(
        isinstance(e, TimeDeltaEvent)
        and (e.delta.days >= 1 or e.delta.total_seconds() >= CHAPTER_TIME_JUMP_SECONDS)
        for e in live
    )
    if moved and jumped:
        return "both"
    if moved:
        return "location_change"
    if jumped:
        return "time_jump"
    return None


class ChapterEndedReply(BaseModel):
    reasoning: str = ""
    should_end: bool


class ChapterEndedExtractor(EventExtractor):
    name = "chapter_ended"
    category = "chapters"
    default_temperature = 0.4
    message_strategy = FixedNumber(3)
    run_strategy = Custom(
        lambda context: chapter_break_reason(context.turn_events) is not None,
        "location move or time jump of 6 hours or more",
    )
    response_model = ChapterEndedReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        reason = chapter_break_reason(turn_events)
        if reason is None:
            return []
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        cue = {
            "location_change": "The characters moved to a new location.",
            "time_jump": "A significant amount of story time passed.",
            "both": "The characters moved to a new location and significant time passed.",
        }[reason]
        user_prompt = build_user_prompt(
            ("Current chapter", str(projection.current_chapter)),
            ("Trigger", cue),
            ("Location", format_location(projection)),
            ("Story time", format_time(projection)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: ChapterEndedReply | None = await self.ask(ctx, user_prompt)
        if reply is None or not reply.should_end:
            return []
        logger.info("第 %d 章结束 (%s): %s", projection.current_chapter, reason, reply.reasoning)
        return [
            self.make(ctx, ChapterEndedEvent, chapter_index=projection.current_chapter, reason=reason)
        ]


# ────────────────────────────────────────────
# 章节描述
# ────────────────────────────────────────────


class ChapterDescriptionReply(BaseModel):
    title: str
    summary: str


class ChapterDescriptionExtractor(EventExtractor):
    """为本轮结束的章节生成标题与摘要，窗口覆盖整章。"""

    name = "chapter_description"
    category = "chapters"
    default_temperature = 0.6
    message_strategy = SinceLastEventOfKind((kind_filter("chapter", "ended"),))
    run_strategy = NewEventsOfKind((kind_filter("chapter", "ended"),))
    response_model = ChapterDescriptionReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        ended = next(
            (e for e in reversed(_live(turn_events)) if isinstance(e, ChapterEndedEvent)), None
        )
        if ended is None:
            return []
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        recent = [
            e.description for e in projection.narrative_events if e.chapter_index == ended.chapter_index
        ]
        user_prompt = build_user_prompt(
            ("Chapter", str(ended.chapter_index)),
            ("Narrative events in this chapter", "\n".join(f"- {d}" for d in recent)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: ChapterDescriptionReply | None = await self.ask(ctx, user_prompt)
        if reply is None or not reply.title.strip():
            return []
        return [
            self.make(
                ctx,
                ChapterDescribedEvent,
                chapter_index=ended.chapter_index,
                title=reply.title.strip(),
                summary=reply.summary.strip(),
            )
        ]
