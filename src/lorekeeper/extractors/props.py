"""场景道具抽取器：增量变化与确认。"""

from __future__ import annotations

from typing import Sequence

from pydantic import BaseModel, Field

from lorekeeper.extractors.base import EventExtractor, TurnContext
from lorekeeper.extractors.formatting import (
    build_user_prompt,
    format_location,
    format_messages,
    format_props,
)
from lorekeeper.extractors.strategies import FixedNumber, NewEventsOfKind, SinceLastEventOfKind
from lorekeeper.models.event import (
    Event,
    LocationPropAddedEvent,
    LocationPropRemovedEvent,
    kind_filter,
)
from lorekeeper.reconcile import filter_to_add, filter_to_remove, unconfirmed
from lorekeeper.state.sets import contains_ci

PROP_CHANGE_KINDS = (
    kind_filter("location", "prop_added"),
    kind_filter("location", "prop_removed"),
)


class PropsChangeReply(BaseModel):
    reasoning: str = ""
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class PropsChangeExtractor(EventExtractor):
    name = "props_change"
    category = "props"
    default_temperature = 0.5
    message_strategy = FixedNumber(2)
    response_model = PropsChangeReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Location", format_location(projection)),
            ("Current props", format_props(projection)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: PropsChangeReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []

        props = projection.location.props if projection.location else []
        removed = filter_to_remove(reply.removed, props)
        added = filter_to_add(reply.added, props)
        return [self.make(ctx, LocationPropRemovedEvent, prop=p) for p in removed] + [
            self.make(ctx, LocationPropAddedEvent, prop=p) for p in added
        ]


class PropsConfirmationReply(BaseModel):
    reasoning: str = ""
    confirmed: list[str]


class PropsConfirmationExtractor(EventExtractor):
    """道具变化后，核验此前已确立的道具是否仍在场，未确认的发出移除事件。

    本轮新加入的道具不在核验范围内。
    """

    name = "props_confirmation"
    category = "props"
    default_temperature = 0.3
    message_strategy = SinceLastEventOfKind(PROP_CHANGE_KINDS)
    run_strategy = NewEventsOfKind(PROP_CHANGE_KINDS)
    response_model = PropsConfirmationReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        added_this_turn = [
            e.prop for e in turn_events if isinstance(e, LocationPropAddedEvent) and not e.deleted
        ]
        current = projection.location.props if projection.location else []
        props = [p for p in current if not contains_ci(added_this_turn, p)]
        if not props:
            return []
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Location", format_location(projection)),
            ("Props to verify", "\n".join(f"- {p}" for p in props)),
            ("Newly added props", "\n".join(f"- {p}" for p in added_this_turn)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: PropsConfirmationReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []
        return [
            self.make(ctx, LocationPropRemovedEvent, prop=p) for p in unconfirmed(props, reply.confirmed)
        ]
