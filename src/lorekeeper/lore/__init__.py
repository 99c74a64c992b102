"""世界书（lore / world-info）协作者。

根据对话文本匹配条目，可按角色或角色对过滤，并格式化进提示词。
没有匹配时返回空文本，而不是错误。
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence

from lorekeeper.models.lore import LoreEntry

logger = logging.getLogger(__name__)

MAX_LORE_ENTRIES = 10


class LoreProvider(Protocol):
    async def match(self, texts: Sequence[str]) -> list[LoreEntry]:
        ...


class KeywordLoreProvider:
    """按关键词（大小写不敏感）扫描对话文本的世界书实现。"""

    def __init__(self, entries: Iterable[LoreEntry]):
        self.entries = list(entries)

    async def match(self, texts: Sequence[str]) -> list[LoreEntry]:
        haystack = "\n".join(texts).lower()
        matched: list[LoreEntry] = []
        for entry in self.entries:
            keys = [k for k in entry.key if k.strip()]
            if any(k.lower() in haystack for k in keys):
                matched.append(entry)
        return matched


def _entry_mentions(entry: LoreEntry, name: str) -> bool:
    lowered = name.lower()
    if any(k.lower() == lowered for k in (*entry.key, *entry.key_secondary)):
        return True
    return bool(entry.comment) and lowered in entry.comment.lower()


def filter_entries_by_character(entries: Iterable[LoreEntry], name: str) -> list[LoreEntry]:
    return [e for e in entries if _entry_mentions(e, name)]


def filter_entries_by_relationship(entries: Iterable[LoreEntry], a: str, b: str) -> list[LoreEntry]:
    return [e for e in entries if _entry_mentions(e, a) or _entry_mentions(e, b)]


def format_entries_for_prompt(entries: Iterable[LoreEntry], limit: int = MAX_LORE_ENTRIES) -> str:
    """按 order 降序取前 limit 条，格式化为 ``[标题]\\n正文``，以空行分隔。"""
    ordered = sorted(entries, key=lambda e: e.order, reverse=True)[:limit]
    blocks = [f"[{e.comment or 'Lore Entry'}]\n{e.content.strip()}" for e in ordered if e.content.strip()]
    return "\n\n".join(blocks)


async def fetch_lore_text(
    provider: LoreProvider | None,
    texts: Sequence[str],
    character: str | None = None,
    pair: tuple[str, str] | None = None,
) -> str:
    """匹配并格式化世界书；提供者出错时记录日志并返回空文本。"""
    if provider is None:
        return ""
    try:
        entries = await provider.match(texts)
    except Exception as e:
        logger.warning("世界书匹配失败，忽略本次 lore: %s", e)
        return ""
    if character is not None:
        entries = filter_entries_by_character(entries, character)
    elif pair is not None:
        entries = filter_entries_by_relationship(entries, *pair)
    return format_entries_for_prompt(entries)


__all__ = [
    "KeywordLoreProvider",
    "LoreProvider",
    "fetch_lore_text",
    "filter_entries_by_character",
    "filter_entries_by_relationship",
    "format_entries_for_prompt",
]
