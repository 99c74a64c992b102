"""事件存储、投影与集合工具。"""

from lorekeeper.state.event_store import EventStore, project_with_turn_events
from lorekeeper.state.sets import add_ci, contains_ci, dedupe_ci, diff_ci, remove_ci
from lorekeeper.state.turn_state import ExtractorFailure, SkipRecord, TurnState

__all__ = [
    "EventStore",
    "ExtractorFailure",
    "SkipRecord",
    "TurnState",
    "add_ci",
    "contains_ci",
    "dedupe_ci",
    "diff_ci",
    "project_with_turn_events",
    "remove_ci",
]
