"""消息窗口选择：决定每个抽取器的提示词包含哪一段对话。

先由消息策略算出 ``[start, end]``，再按全局上限从前端裁剪（永远不丢弃末尾）。
"""

from __future__ import annotations

from dataclasses import dataclass

from lorekeeper.config.settings import ExtractionSettings
from lorekeeper.extractors.strategies import FixedNumber, MessageStrategy, SinceLastEventOfKind
from lorekeeper.models.snapshot import Source
from lorekeeper.state.event_store import EventStore, SwipeResolver


@dataclass(frozen=True)
class MessageRange:
    start: int
    end: int

    def __len__(self) -> int:
        return max(0, self.end - self.start + 1)

    def __iter__(self):
        return iter(range(self.start, self.end + 1))


def limit_message_range(start: int, end: int, max_messages: int | None) -> MessageRange:
    """把 [start, end] 裁剪到最多 max_messages 条；None 表示不限。"""
    if max_messages is None or end - start + 1 <= max_messages:
        return MessageRange(start, end)
    return MessageRange(end - max(max_messages, 1) + 1, end)


def get_max_messages(settings: ExtractionSettings, extractor_name: str) -> int | None:
    return settings.max_messages_for(extractor_name)


def strategy_start(
    strategy: MessageStrategy,
    store: EventStore,
    current_message: Source,
    swipe_resolver: SwipeResolver | None = None,
) -> int:
    """按消息策略计算窗口起点（未裁剪）。"""
    current = current_message.message_id
    match strategy:
        case FixedNumber(n=n):
            return max(0, current - max(n, 1) + 1)
        case SinceLastEventOfKind(kinds=kinds):
            last = store.find_last_event_of_kind(
                kinds, before_message_id=current, swipe_resolver=swipe_resolver
            )
            if last is None:
                return 0
            return min(last.source.message_id + 1, current)
        case _:
            raise TypeError(f"未知消息策略: {strategy!r}")


def select_message_range(
    strategy: MessageStrategy,
    store: EventStore,
    current_message: Source,
    settings: ExtractionSettings,
    extractor_name: str,
    swipe_resolver: SwipeResolver | None = None,
) -> MessageRange:
    start = strategy_start(strategy, store, current_message, swipe_resolver)
    return limit_message_range(
        start, current_message.message_id, get_max_messages(settings, extractor_name)
    )
