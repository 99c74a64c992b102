"""事件存储与投影引擎。

存储持有初始快照与按追加顺序排列的事件日志，并通过确定性回放回答
“第 M 条消息、第 S 个 swipe 时的状态是什么”。
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from lorekeeper.models.event import Event, EventKindFilter, matches_any
from lorekeeper.models.snapshot import Snapshot, Source
from lorekeeper.state.projection import fold_into

logger = logging.getLogger(__name__)

SwipeResolver = Callable[[int], int]


class EventStore:
    """单写者的追加式事件日志。

    - 只有 ``append_events`` / ``replace_initial_snapshot`` 会修改存储；
    - 读取（投影、活跃事件）无副作用，可被任意多个读者并发调用；
    - 不做领域层面的校验与去重，那是抽取器的职责。
    """

    def __init__(
        self,
        initial_snapshot: Snapshot | None = None,
        events: Iterable[Event] | None = None,
    ):
        self._initial_snapshot = initial_snapshot
        self._events: list[Event] = list(events or [])

    # ────────────────────────────────────────────
    # 写入
    # ────────────────────────────────────────────

    def replace_initial_snapshot(self, snapshot: Snapshot) -> None:
        """设置基线快照。已有事件时替换基线会使之前的投影失效。"""
        if self._events:
            logger.warning("已有 %d 条事件时替换初始快照，历史投影将失效", len(self._events))
        self._initial_snapshot = snapshot.model_copy(deep=True)

    def append_events(self, events: Sequence[Event]) -> None:
        """按调用顺序追加事件。"""
        self._events.extend(events)
        if events:
            logger.debug("事件日志追加 %d 条，共 %d 条", len(events), len(self._events))

    # ────────────────────────────────────────────
    # 读取
    # ────────────────────────────────────────────

    @property
    def initial_snapshot(self) -> Snapshot | None:
        return self._initial_snapshot

    @property
    def has_initial_snapshot(self) -> bool:
        return self._initial_snapshot is not None

    @property
    def events(self) -> list[Event]:
        """完整日志（含已撤销事件）的浅拷贝。"""
        return list(self._events)

    def get_active_events(self) -> list[Event]:
        return [e for e in self._events if not e.deleted]

    def get_event(self, event_id: str) -> Event | None:
        for event in self._events:
            if event.id == event_id:
                return event
        return None

    def last_message_id(self) -> int | None:
        """已处理过的最大消息序号（含初始快照所在消息）。"""
        ids = [e.source.message_id for e in self._events]
        if self._initial_snapshot is not None:
            ids.append(self._initial_snapshot.source.message_id)
        return max(ids) if ids else None

    def find_last_event_of_kind(
        self,
        kinds: Sequence[EventKindFilter],
        before_message_id: int | None = None,
        swipe_resolver: SwipeResolver | None = None,
    ) -> Event | None:
        """查找最近一条匹配的活跃事件；可限定只看某条消息之前的事件。

        与投影一致，只看各消息规范 swipe 上的事件。
        """
        canonical: dict[int, int] = {}
        for event in reversed(self._events):
            if event.deleted:
                continue
            mid = event.source.message_id
            if before_message_id is not None and mid >= before_message_id:
                continue
            if mid not in canonical:
                canonical[mid] = resolve_swipe_safely(swipe_resolver, mid)
            if event.source.swipe_id != canonical[mid]:
                continue
            if matches_any(event, kinds):
                return event
        return None

    def project_state_at_message(
        self,
        message_id: int,
        swipe_id: int | None = None,
        swipe_resolver: SwipeResolver | None = None,
    ) -> Snapshot | None:
        """回放得到第 message_id 条消息时的快照。

        Args:
            message_id: 目标消息序号。
            swipe_id: 目标消息自身使用的 swipe；为 None 时按 resolver 解析。
            swipe_resolver: 其他消息的规范 swipe 解析函数；缺省或失败时为 0。

        Returns:
            新的快照对象；尚无初始快照时返回 None。
        """
        if self._initial_snapshot is None:
            return None

        canonical: dict[int, int] = {}

        def resolve(mid: int) -> int:
            if mid == message_id and swipe_id is not None:
                return swipe_id
            if mid not in canonical:
                canonical[mid] = resolve_swipe_safely(swipe_resolver, mid)
            return canonical[mid]

        snapshot = self._initial_snapshot.model_copy(deep=True)
        for event in self._events:
            if event.deleted or event.source.message_id > message_id:
                continue
            if event.source.swipe_id != resolve(event.source.message_id):
                continue
            fold_into(snapshot, event)
        snapshot.source = Source(message_id=message_id, swipe_id=resolve(message_id))
        return snapshot

    def get_deep_clone(self) -> EventStore:
        """返回独立副本，对副本的追加与撤销不影响原存储。"""
        return EventStore(
            initial_snapshot=(
                self._initial_snapshot.model_copy(deep=True) if self._initial_snapshot else None
            ),
            events=[e.model_copy(deep=True) for e in self._events],
        )


def resolve_swipe_safely(resolver: SwipeResolver | None, message_id: int) -> int:
    if resolver is None:
        return 0
    try:
        resolved = resolver(message_id)
    except Exception as e:
        logger.warning("规范 swipe 解析失败 (message %d): %s，按 0 处理", message_id, e)
        return 0
    if resolved is None or resolved < 0:
        return 0
    return resolved


def project_with_turn_events(
    store: EventStore,
    turn_events: Sequence[Event],
    current_message: Source,
    swipe_resolver: SwipeResolver | None = None,
) -> Snapshot | None:
    """在私有副本上追加本轮未提交事件后投影，共享日志不受影响。"""
    clone = store.get_deep_clone()
    clone.append_events([e.model_copy(deep=True) for e in turn_events])
    return clone.project_state_at_message(
        current_message.message_id,
        swipe_id=current_message.swipe_id,
        swipe_resolver=swipe_resolver,
    )
