from lorekeeper.extractors.base import (
    BaseExtractor,
    EventExtractor,
    PerCharacterExtractor,
    PerPairExtractor,
    TurnContext,
)
from lorekeeper.extractors.initial import InitialSnapshotExtractor
from lorekeeper.extractors.name_resolution import resolve_names_in_events
from lorekeeper.extractors.parse import PromptBackoff, generate_and_parse
from lorekeeper.extractors.registry import Phase, all_extractor_names, default_phases
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

__all__ = [
    "BaseExtractor",
    "EventExtractor",
    "PerCharacterExtractor",
    "PerPairExtractor",
    "TurnContext",
    "InitialSnapshotExtractor",
    "resolve_names_in_events",
    "PromptBackoff",
    "generate_and_parse",
    "Phase",
    "all_extractor_names",
    "default_phases",
    "Custom",
    "EveryMessage",
    "EveryNMessages",
    "FixedNumber",
    "NewEventsOfKind",
    "RunContext",
    "SinceLastEventOfKind",
    "evaluate_run_strategy",
    "MessageRange",
    "limit_message_range",
    "select_message_range",
]
