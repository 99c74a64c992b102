"""测试消息窗口选择与运行策略。"""

import pytest

from lorekeeper.config.settings import ExtractionSettings
from lorekeeper.extractors.strategies import (
    Custom,
    EveryMessage,
    EveryNMessages,
    FixedNumber,
    NewEventsOfKind,
    RunContext,
    SinceLastEventOfKind,
    evaluate_run_strategy,
)
from lorekeeper.extractors.window import MessageRange, limit_message_range, select_message_range
from lorekeeper.models.chat import ChatContext
from lorekeeper.models.event import (
    ChapterEndedEvent,
    LocationMovedEvent,
    LocationPropAddedEvent,
    kind_filter,
)
from lorekeeper.models.snapshot import Snapshot, Source
from lorekeeper.state.event_store import EventStore


def _run_context(message_id: int, turn_events=(), store: EventStore | None = None) -> RunContext:
    return RunContext(
        store=store or EventStore(),
        chat=ChatContext(),
        settings=ExtractionSettings(),
        current_message=Source(message_id=message_id),
        turn_events=tuple(turn_events),
    )


# ── 窗口裁剪 ──


def test_limit_message_range_clamps_from_front():
    assert limit_message_range(0, 49, 10) == MessageRange(40, 49)


def test_limit_message_range_short_range_unchanged():
    assert limit_message_range(0, 4, 10) == MessageRange(0, 4)


def test_limit_message_range_single_message():
    assert limit_message_range(0, 10, 1) == MessageRange(10, 10)


def test_limit_message_range_unbounded():
    window = limit_message_range(3, 200, None)
    assert window == MessageRange(3, 200)
    assert len(window) == 198


def test_fixed_number_window():
    store = EventStore(initial_snapshot=Snapshot(source=Source(message_id=0)))
    window = select_message_range(
        FixedNumber(2), store, Source(message_id=7), ExtractionSettings(), "props_change"
    )
    assert list(window) == [6, 7]


def test_fixed_number_window_at_start():
    window = select_message_range(
        FixedNumber(3), EventStore(), Source(message_id=0), ExtractionSettings(), "props_change"
    )
    assert list(window) == [0]


def test_since_last_event_window():
    """窗口从最近一次移动事件之后开始。"""
    store = EventStore(initial_snapshot=Snapshot(source=Source(message_id=0)))
    store.append_events([
        LocationMovedEvent(source=Source(message_id=3), new_area="Harbor", new_place="Pier"),
        LocationPropAddedEvent(source=Source(message_id=5), prop="rope"),
    ])
    strategy = SinceLastEventOfKind((kind_filter("location", "moved"),))

    window = select_message_range(strategy, store, Source(message_id=8), ExtractionSettings(), "props_confirmation")
    assert window == MessageRange(4, 8)


def test_since_last_event_window_without_match_uses_whole_chat_then_clamps():
    strategy = SinceLastEventOfKind((kind_filter("chapter", "ended"),))
    settings = ExtractionSettings(max_messages_to_send=10, max_chapter_messages_to_send=24)

    regular = select_message_range(strategy, EventStore(), Source(message_id=49), settings, "props_confirmation")
    chapter = select_message_range(strategy, EventStore(), Source(message_id=49), settings, "chapter_description")

    assert regular == MessageRange(40, 49)
    assert chapter == MessageRange(26, 49)


def test_since_last_event_ignores_events_at_current_message():
    store = EventStore(initial_snapshot=Snapshot(source=Source(message_id=0)))
    store.append_events([ChapterEndedEvent(source=Source(message_id=6), chapter_index=0)])
    strategy = SinceLastEventOfKind((kind_filter("chapter", "ended"),))

    window = select_message_range(strategy, store, Source(message_id=6), ExtractionSettings(), "chapter_description")
    assert window.start == 0


def test_since_last_event_window_ignores_events_on_other_swipes():
    store = EventStore(initial_snapshot=Snapshot(source=Source(message_id=0)))
    store.append_events([
        LocationPropAddedEvent(source=Source(message_id=2), prop="umbrella"),
        LocationPropAddedEvent(source=Source(message_id=5, swipe_id=1), prop="kite"),
    ])
    strategy = SinceLastEventOfKind((kind_filter("location", "prop_added"),))

    window = select_message_range(
        strategy, store, Source(message_id=7), ExtractionSettings(), "props_confirmation", swipe_resolver=lambda mid: 0
    )
    assert window == MessageRange(3, 7)


# ── 运行策略 ──


def test_every_message_always_runs():
    assert evaluate_run_strategy(EveryMessage(), _run_context(0))


@pytest.mark.parametrize("message_id,expected", [(5, True), (11, True), (0, False), (3, False)])
def test_every_n_messages(message_id, expected):
    assert evaluate_run_strategy(EveryNMessages(n=6), _run_context(message_id)) is expected


def test_every_n_messages_with_offset():
    strategy = EveryNMessages(n=6, offset=3)
    fired = [m for m in range(12) if evaluate_run_strategy(strategy, _run_context(m))]
    assert fired == [2, 8]


def test_new_events_of_kind():
    added = LocationPropAddedEvent(source=Source(message_id=2), prop="newspaper")
    strategy = NewEventsOfKind((kind_filter("location", "prop_added"),))

    assert evaluate_run_strategy(strategy, _run_context(2, [added]))
    assert not evaluate_run_strategy(strategy, _run_context(2, []))


def test_new_events_of_kind_ignores_retracted():
    added = LocationPropAddedEvent(source=Source(message_id=2), prop="newspaper", deleted=True)
    strategy = NewEventsOfKind((kind_filter("location", "prop_added"),))
    assert not evaluate_run_strategy(strategy, _run_context(2, [added]))


def test_kind_filter_without_subkind_matches_all_variants():
    strategy = NewEventsOfKind((kind_filter("location"),))
    moved = LocationMovedEvent(source=Source(message_id=1), new_area="Harbor", new_place="Pier")
    assert evaluate_run_strategy(strategy, _run_context(1, [moved]))


def test_custom_predicate_sees_context():
    strategy = Custom(lambda ctx: ctx.current_message.message_id > 3)
    assert evaluate_run_strategy(strategy, _run_context(4))
    assert not evaluate_run_strategy(strategy, _run_context(2))
