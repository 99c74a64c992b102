"""提示词片段格式化：对话窗口与当前状态的文本表示。"""

from __future__ import annotations

from lorekeeper.extractors.window import MessageRange
from lorekeeper.models.chat import ChatContext
from lorekeeper.models.snapshot import CharacterState, RelationshipState, Snapshot

NONE = "(none)"


def format_messages(chat: ChatContext, window: MessageRange) -> str:
    """格式化窗口内的消息，系统消息不参与抽取。"""
    lines: list[str] = []
    for message_id in window:
        if not 0 <= message_id < len(chat.chat):
            continue
        message = chat.chat[message_id]
        if message.is_system or not message.mes.strip():
            continue
        lines.append(f"[{message_id}] {chat.speaker(message)}: {message.mes.strip()}")
    return "\n\n".join(lines) if lines else NONE


def window_texts(chat: ChatContext, window: MessageRange) -> list[str]:
    return [chat.chat[i].mes for i in window if 0 <= i < len(chat.chat)]


def _join(items: list[str]) -> str:
    return ", ".join(items) if items else NONE


def format_location(snapshot: Snapshot) -> str:
    loc = snapshot.location
    if loc is None:
        return "Unknown location"
    parts = [p for p in (loc.area, loc.place, loc.position) if p]
    return f"{' > '.join(parts) or 'Unknown'} ({loc.location_type})"


def format_props(snapshot: Snapshot) -> str:
    return _join(snapshot.location.props if snapshot.location else [])


def format_time(snapshot: Snapshot) -> str:
    return snapshot.time.strftime("%A %Y-%m-%d %H:%M") if snapshot.time else "Unknown"


def format_character_state(state: CharacterState | None, name: str = "") -> str:
    if state is None:
        return f"## {name}\n(no tracked state)"
    worn = [f"{slot}: {value}" for slot, value in state.outfit.items() if value]
    lines = [
        f"## {state.name}",
        f"Position: {state.position or 'unknown'}",
        f"Activity: {state.activity or 'none'}",
        f"Mood: {_join(state.mood)}",
        f"Physical state: {_join(state.physical_state)}",
        f"Outfit: {_join(worn)}",
    ]
    if state.akas:
        lines.append(f"Also known as: {_join(state.akas)}")
    if state.profile is not None:
        profile = state.profile
        basics = ", ".join(v for v in (profile.sex, profile.species, profile.age) if v)
        lines.append(
            f"Profile: {basics or 'unknown'}; appearance [{_join(profile.appearance)}]; "
            f"personality [{_join(profile.personality)}]"
        )
    return "\n".join(lines)


def format_relationship(rel: RelationshipState | None, a: str, b: str) -> str:
    if rel is None:
        return f"{a} & {b}: no established relationship (strangers)"
    first, second = rel.pair
    return "\n".join(
        [
            f"{first} & {second}: {rel.status}",
            f"{first} -> {second}: feelings [{_join(rel.a_to_b.feelings)}], "
            f"wants [{_join(rel.a_to_b.wants)}], secrets [{_join(rel.a_to_b.secrets)}]",
            f"{second} -> {first}: feelings [{_join(rel.b_to_a.feelings)}], "
            f"wants [{_join(rel.b_to_a.wants)}], secrets [{_join(rel.b_to_a.secrets)}]",
        ]
    )


def format_scene(snapshot: Snapshot) -> str:
    scene = snapshot.scene
    if scene is None:
        return "No scene tracked yet"
    t = scene.tension
    return (
        f"Topic: {scene.topic or 'unknown'}\nTone: {scene.tone or 'unknown'}\n"
        f"Tension: {t.level} / {t.type} ({t.direction})"
    )


def build_user_prompt(*sections: tuple[str, str]) -> str:
    """把若干 (标题, 内容) 拼成 markdown 分节，空内容的节被省略。"""
    blocks = [f"## {title}\n{body}" for title, body in sections if body and body.strip()]
    blocks.append("Respond with JSON only.")
    return "\n\n".join(blocks)
