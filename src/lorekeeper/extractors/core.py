"""核心维度抽取器：时间、地点、天气、话题与基调、张力、在场角色。"""

from __future__ import annotations

import logging
from datetime import datetime
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
from lorekeeper.extractors.strategies import EveryNMessages, FixedNumber, SinceLastEventOfKind
from lorekeeper.models.event import (
    CharacterAkasAddedEvent,
    CharacterAppearedEvent,
    CharacterDepartedEvent,
    ClimateSetEvent,
    Event,
    LocationMovedEvent,
    TensionEvent,
    TimeDelta,
    TimeDeltaEvent,
    TimeInitialEvent,
    TopicToneEvent,
    kind_filter,
)
from lorekeeper.models.snapshot import (
    TENSION_LEVELS,
    Climate,
    TensionDirection,
    TensionLevel,
    TensionType,
)
from lorekeeper.state.sets import contains_ci, dedupe_ci

logger = logging.getLogger(__name__)


def _same(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


# ────────────────────────────────────────────
# 时间
# ────────────────────────────────────────────


class TimeChangeReply(BaseModel):
    reasoning: str = ""
    changed: bool
    delta: TimeDelta = Field(default_factory=TimeDelta)
    current_time: datetime | None = Field(default=None, description="尚无时间时的绝对时间")


class TimeChangeExtractor(EventExtractor):
    name = "time_change"
    category = "time"
    default_temperature = 0.3
    message_strategy = FixedNumber(2)
    response_model = TimeChangeReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Current story time", format_time(projection)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: TimeChangeReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []

        if projection.time is None:
            if reply.current_time is None:
                return []
            return [self.make(ctx, TimeInitialEvent, time=reply.current_time)]
        if not reply.changed or reply.delta.is_zero():
            return []
        if reply.delta.total_seconds() < 0:
            logger.warning("时间抽取返回负的时间增量，已忽略: %s", reply.delta)
            return []
        return [self.make(ctx, TimeDeltaEvent, delta=reply.delta)]


# ────────────────────────────────────────────
# 地点
# ────────────────────────────────────────────


class LocationChangeReply(BaseModel):
    reasoning: str = ""
    moved: bool
    area: str = ""
    place: str = ""
    position: str = ""
    location_type: str = ""


class LocationChangeExtractor(EventExtractor):
    name = "location_change"
    category = "location"
    default_temperature = 0.5
    message_strategy = FixedNumber(3)
    response_model = LocationChangeReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Current location", format_location(projection)),
            ("World info", await self.lore_text(ctx, window)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: LocationChangeReply | None = await self.ask(ctx, user_prompt)
        if reply is None or not reply.moved or not reply.place.strip():
            return []

        current = projection.location
        if current is not None and all(
            _same(a, b)
            for a, b in (
                (current.area, reply.area),
                (current.place, reply.place),
                (current.position, reply.position),
            )
        ):
            return []
        return [
            self.make(
                ctx,
                LocationMovedEvent,
                new_area=reply.area.strip() or (current.area if current else ""),
                new_place=reply.place.strip(),
                new_position=reply.position.strip(),
                new_location_type=reply.location_type.strip(),
            )
        ]


# ────────────────────────────────────────────
# 天气
# ────────────────────────────────────────────


class ClimateChangeReply(BaseModel):
    reasoning: str = ""
    changed: bool
    climate: Climate | None = None


class ClimateChangeExtractor(EventExtractor):
    name = "climate_change"
    category = "climate"
    default_temperature = 0.3
    message_strategy = FixedNumber(2)
    response_model = ClimateChangeReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        current = projection.climate.model_dump_json(exclude_none=True) if projection.climate else "unknown"
        user_prompt = build_user_prompt(
            ("Story time", format_time(projection)),
            ("Location", format_location(projection)),
            ("Current climate", current),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: ClimateChangeReply | None = await self.ask(ctx, user_prompt)
        if reply is None or reply.climate is None:
            return []
        if projection.climate is not None and (not reply.changed or reply.climate == projection.climate):
            return []
        return [self.make(ctx, ClimateSetEvent, climate=reply.climate)]


# ────────────────────────────────────────────
# 话题与基调
# ────────────────────────────────────────────


class TopicToneReply(BaseModel):
    reasoning: str = ""
    changed: bool
    topic: str = ""
    tone: str = ""


class TopicToneChangeExtractor(EventExtractor):
    name = "topic_tone_change"
    category = "scene"
    default_temperature = 0.6
    message_strategy = FixedNumber(2)
    response_model = TopicToneReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Current scene", format_scene(projection)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: TopicToneReply | None = await self.ask(ctx, user_prompt)
        if reply is None or not reply.topic.strip() or not reply.tone.strip():
            return []
        scene = projection.scene
        if scene is not None and (
            not reply.changed or (_same(scene.topic, reply.topic) and _same(scene.tone, reply.tone))
        ):
            return []
        return [self.make(ctx, TopicToneEvent, topic=reply.topic.strip(), tone=reply.tone.strip())]


# ────────────────────────────────────────────
# 张力
# ────────────────────────────────────────────


def tension_direction(previous: str | None, current: str) -> TensionDirection:
    """比较张力等级的先后，得出走向。"""
    if previous is None or previous not in TENSION_LEVELS or current not in TENSION_LEVELS:
        return "stable"
    delta = TENSION_LEVELS.index(current) - TENSION_LEVELS.index(previous)
    if delta > 0:
        return "escalating"
    if delta < 0:
        return "decreasing"
    return "stable"


class TensionChangeReply(BaseModel):
    reasoning: str = ""
    changed: bool
    level: TensionLevel
    type: TensionType


class TensionChangeExtractor(EventExtractor):
    name = "tension_change"
    category = "scene"
    default_temperature = 0.5
    message_strategy = SinceLastEventOfKind((kind_filter("tension"),))
    run_strategy = EveryNMessages(n=2, offset=1)
    response_model = TensionChangeReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Current scene", format_scene(projection)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: TensionChangeReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []
        previous = projection.scene.tension if projection.scene else None
        if previous is not None and (
            not reply.changed or (previous.level == reply.level and previous.type == reply.type)
        ):
            return []
        return [
            self.make(
                ctx,
                TensionEvent,
                level=reply.level,
                type=reply.type,
                direction=tension_direction(previous.level if previous else None, reply.level),
            )
        ]


# ────────────────────────────────────────────
# 在场角色
# ────────────────────────────────────────────


class AppearedCharacter(BaseModel):
    name: str
    description: str = ""
    akas: list[str] = Field(default_factory=list)


class PresenceChangeReply(BaseModel):
    reasoning: str = ""
    appeared: list[AppearedCharacter] = Field(default_factory=list)
    departed: list[str] = Field(default_factory=list)


class PresenceChangeExtractor(EventExtractor):
    name = "presence_change"
    category = "characters"
    default_temperature = 0.4
    message_strategy = FixedNumber(2)
    response_model = PresenceChangeReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        present = projection.characters_present
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("User character", ctx.chat.name1),
            ("Characters currently present", ", ".join(present) or "(none)"),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: PresenceChangeReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []

        events: list[Event] = []
        seen: list[str] = []
        for item in reply.appeared:
            name = item.name.strip()
            if not name or contains_ci(present, name) or contains_ci(seen, name):
                continue
            seen.append(name)
            events.append(self.make(ctx, CharacterAppearedEvent, character=name, description=item.description))
            known = projection.find_character(name)
            akas = [a for a in dedupe_ci(item.akas) if not _same(a, name)]
            if known is not None:
                akas = [a for a in akas if not contains_ci(known.akas, a)]
            if akas:
                events.append(self.make(ctx, CharacterAkasAddedEvent, character=name, akas=akas))
        for name in dedupe_ci(reply.departed):
            if contains_ci(present, name) and not contains_ci(seen, name):
                events.append(self.make(ctx, CharacterDepartedEvent, character=name))
        return events
