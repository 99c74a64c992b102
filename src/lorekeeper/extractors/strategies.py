"""运行策略与消息策略。

两者都是封闭的小型变体类型，由 ``match`` 穷举分派：
- 运行策略决定抽取器本轮是否触发；
- 消息策略决定抽取器能看到哪一段对话记录。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Sequence, Union

from lorekeeper.models.event import BaseEvent, EventKindFilter, matches_any
from lorekeeper.models.snapshot import Source

if TYPE_CHECKING:
    from lorekeeper.config.settings import ExtractionSettings
    from lorekeeper.models.chat import ChatContext
    from lorekeeper.state.event_store import EventStore


# ── 消息策略 ──


@dataclass(frozen=True)
class FixedNumber:
    """截至当前消息的最近 n 条。"""

    n: int


@dataclass(frozen=True)
class SinceLastEventOfKind:
    """自最近一条匹配事件之后的所有消息；没有匹配事件时为整段记录。"""

    kinds: tuple[EventKindFilter, ...]


MessageStrategy = Union[FixedNumber, SinceLastEventOfKind]


# ── 运行策略 ──


@dataclass(frozen=True)
class RunContext:
    """触发判断所需的只读上下文。"""

    store: EventStore
    chat: ChatContext
    settings: ExtractionSettings
    current_message: Source
    turn_events: Sequence[BaseEvent] = ()
    ran_at_messages: Sequence[int] = ()
    produced_at_messages: Sequence[int] = ()


@dataclass(frozen=True)
class EveryMessage:
    pass


@dataclass(frozen=True)
class EveryNMessages:
    """当 (message_id + 1) mod n == offset 时触发。"""

    n: int
    offset: int = 0


@dataclass(frozen=True)
class NewEventsOfKind:
    """本轮已产出的未撤销事件中存在匹配项时触发。"""

    kinds: tuple[EventKindFilter, ...]


@dataclass(frozen=True)
class Custom:
    predicate: Callable[[RunContext], bool] = field(compare=False)
    description: str = ""


RunStrategy = Union[EveryMessage, EveryNMessages, NewEventsOfKind, Custom]


def has_new_events_of_kind(turn_events: Sequence[BaseEvent], kinds: Sequence[EventKindFilter]) -> bool:
    return any(not e.deleted and matches_any(e, kinds) for e in turn_events)


def evaluate_run_strategy(strategy: RunStrategy, context: RunContext) -> bool:
    match strategy:
        case EveryMessage():
            return True
        case EveryNMessages(n=n, offset=offset):
            if n <= 1:
                return True
            return (context.current_message.message_id + 1) % n == offset % n
        case NewEventsOfKind(kinds=kinds):
            return has_new_events_of_kind(context.turn_events, kinds)
        case Custom(predicate=predicate):
            return bool(predicate(context))
        case _:
            raise TypeError(f"未知运行策略: {strategy!r}")
