"""初始快照抽取：存储中还没有基线时，从开场对话一次性建立完整状态。"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel, Field

from lorekeeper.extractors.base import BaseExtractor, TurnContext
from lorekeeper.extractors.formatting import build_user_prompt, format_messages
from lorekeeper.extractors.strategies import FixedNumber
from lorekeeper.extractors.window import limit_message_range
from lorekeeper.models.snapshot import (
    OUTFIT_SLOTS,
    CharacterProfile,
    CharacterState,
    Climate,
    LocationState,
    RelationshipState,
    RelationshipStatus,
    SceneState,
    Snapshot,
    pair_key,
    sort_pair,
)
from lorekeeper.state.sets import contains_ci, dedupe_ci

logger = logging.getLogger(__name__)


class InitialRelationship(BaseModel):
    pair: list[str]
    status: RelationshipStatus = "strangers"


class InitialSnapshotReply(BaseModel):
    reasoning: str = ""
    time: datetime | None = None
    location: LocationState | None = None
    climate: Climate | None = None
    scene: SceneState | None = None
    characters: list[CharacterState] = Field(default_factory=list)
    characters_present: list[str] = Field(default_factory=list)
    relationships: list[InitialRelationship] = Field(default_factory=list)


class InitialSnapshotExtractor(BaseExtractor):
    """不产出事件，只返回一个快照，由编排器安装为基线。"""

    name = "initial_snapshot"
    category = "scene"
    default_temperature = 0.4
    message_strategy = FixedNumber(10)
    response_model = InitialSnapshotReply

    def _character_sheets(self, ctx: TurnContext) -> str:
        sheets = []
        for character in ctx.chat.characters:
            body = "\n".join(p for p in (character.description, character.personality) if p)
            sheets.append(f"### {character.name}\n{body}".strip())
        if ctx.chat.persona:
            sheets.append(f"### {ctx.chat.name1} (user)\n{ctx.chat.persona}")
        return "\n\n".join(sheets)

    async def extract(self, ctx: TurnContext) -> Snapshot | None:
        window = limit_message_range(0, ctx.message_id, ctx.settings.max_messages_to_send)
        user_prompt = build_user_prompt(
            ("Characters", self._character_sheets(ctx)),
            ("World info", await self.lore_text(ctx, window)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: InitialSnapshotReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return None
        return build_initial_snapshot(ctx, reply)


def _normalize_profile(profile: CharacterProfile | None) -> CharacterProfile | None:
    if profile is None:
        return None
    profile.appearance = dedupe_ci(profile.appearance)
    profile.personality = dedupe_ci(profile.personality)
    if not any((profile.sex, profile.species, profile.age, profile.appearance, profile.personality)):
        return None
    return profile


def build_initial_snapshot(ctx: TurnContext, reply: InitialSnapshotReply) -> Snapshot:
    """按追踪开关裁剪回复，并整理成规范化的快照。"""
    track = ctx.settings.track
    snapshot = Snapshot(source=ctx.current_message.model_copy())
    if track.time:
        snapshot.time = reply.time
    if track.location and reply.location is not None:
        location = reply.location.model_copy(deep=True)
        location.props = dedupe_ci(location.props) if track.props else []
        snapshot.location = location
    if track.climate:
        snapshot.climate = reply.climate
    if track.scene:
        snapshot.scene = reply.scene

    if track.characters:
        for state in reply.characters:
            name = state.name.strip()
            if not name or snapshot.find_character(name) is not None:
                continue
            state = state.model_copy(deep=True)
            state.name = name
            state.mood = dedupe_ci(state.mood)
            state.physical_state = dedupe_ci(state.physical_state)
            state.outfit = {slot: state.outfit.get(slot) for slot in OUTFIT_SLOTS}
            state.profile = _normalize_profile(state.profile)
            snapshot.characters[name] = state
        for name in dedupe_ci(reply.characters_present):
            known = snapshot.find_character(name)
            if known is None:
                known = CharacterState(name=name.strip())
                snapshot.characters[known.name] = known
            if not contains_ci(snapshot.characters_present, known.name):
                snapshot.characters_present.append(known.name)

    if track.relationships:
        for rel in reply.relationships:
            if len(rel.pair) != 2:
                continue
            a, b = sort_pair(rel.pair[0].strip(), rel.pair[1].strip())
            if not a or not b or a.lower() == b.lower():
                continue
            snapshot.relationships.setdefault(
                pair_key(a, b), RelationshipState(pair=(a, b), status=rel.status)
            )

    logger.info(
        "初始快照: %d 个角色, %d 段关系", len(snapshot.characters), len(snapshot.relationships)
    )
    return snapshot
