"""内置抽取器的注册表，按阶段分组，阶段内顺序即合并顺序。"""

from __future__ import annotations

from dataclasses import dataclass

from lorekeeper.extractors.base import BaseExtractor
from lorekeeper.extractors.characters import (
    AppearedCharacterOutfitExtractor,
    MoodPhysicalChangeExtractor,
    NicknameExtractor,
    OutfitChangeExtractor,
    PositionActivityChangeExtractor,
)
from lorekeeper.extractors.consolidation import (
    CharacterStateConsolidationExtractor,
    RelationshipAttitudeConsolidationExtractor,
    SubjectsConfirmationExtractor,
)
from lorekeeper.extractors.core import (
    ClimateChangeExtractor,
    LocationChangeExtractor,
    PresenceChangeExtractor,
    TensionChangeExtractor,
    TimeChangeExtractor,
    TopicToneChangeExtractor,
)
from lorekeeper.extractors.narrative import (
    ChapterDescriptionExtractor,
    ChapterEndedExtractor,
    ForecastExtractor,
    NarrativeDescriptionExtractor,
)
from lorekeeper.extractors.props import PropsChangeExtractor, PropsConfirmationExtractor
from lorekeeper.extractors.relationships import AttitudeChangeExtractor, RelationshipSubjectsExtractor


@dataclass(frozen=True)
class Phase:
    name: str
    extractors: tuple[BaseExtractor, ...]


def default_phases() -> list[Phase]:
    return [
        Phase(
            "core",
            (
                TimeChangeExtractor(),
                LocationChangeExtractor(),
                ClimateChangeExtractor(),
                TopicToneChangeExtractor(),
                TensionChangeExtractor(),
                PresenceChangeExtractor(),
            ),
        ),
        Phase(
            "characters",
            (
                MoodPhysicalChangeExtractor(),
                PositionActivityChangeExtractor(),
                OutfitChangeExtractor(),
                AppearedCharacterOutfitExtractor(),
                NicknameExtractor(),
                PropsChangeExtractor(),
                RelationshipSubjectsExtractor(),
                AttitudeChangeExtractor(),
            ),
        ),
        Phase(
            "reconciliation",
            (
                PropsConfirmationExtractor(),
                SubjectsConfirmationExtractor(),
                CharacterStateConsolidationExtractor(),
                RelationshipAttitudeConsolidationExtractor(),
                ForecastExtractor(),
                NarrativeDescriptionExtractor(),
                ChapterEndedExtractor(),
            ),
        ),
        Phase("chapter", (ChapterDescriptionExtractor(),)),
    ]


def all_extractor_names(phases: list[Phase] | None = None) -> list[str]:
    return [e.name for phase in phases or default_phases() for e in phase.extractors]
