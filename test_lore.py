"""测试世界书匹配与格式化。"""

import asyncio

from lorekeeper.lore import (
    KeywordLoreProvider,
    fetch_lore_text,
    filter_entries_by_character,
    format_entries_for_prompt,
)
from lorekeeper.models.lore import LoreEntry

ENTRIES = [
    LoreEntry(key=["harbor"], content="The harbor smells of salt.", comment="Harbor", order=10),
    LoreEntry(key=["Alice"], content="Alice is a botanist.", comment="Alice", order=50),
    LoreEntry(key=["blank"], content="   ", comment="Empty"),
]


class FailingProvider:
    async def match(self, texts):
        raise ConnectionError("world info unavailable")


def test_keyword_match_is_case_insensitive():
    provider = KeywordLoreProvider(ENTRIES)
    matched = asyncio.run(provider.match(["They walked to the HARBOR with alice."]))
    assert [e.comment for e in matched] == ["Harbor", "Alice"]


def test_format_orders_by_priority_and_skips_empty():
    text = format_entries_for_prompt(ENTRIES)
    assert text == "[Alice]\nAlice is a botanist.\n\n[Harbor]\nThe harbor smells of salt."


def test_filter_by_character():
    assert [e.comment for e in filter_entries_by_character(ENTRIES, "alice")] == ["Alice"]


def test_fetch_without_provider_or_match_is_empty():
    assert asyncio.run(fetch_lore_text(None, ["harbor"])) == ""
    provider = KeywordLoreProvider(ENTRIES)
    assert asyncio.run(fetch_lore_text(provider, ["nothing relevant"])) == ""


def test_fetch_swallows_provider_errors():
    assert asyncio.run(fetch_lore_text(FailingProvider(), ["harbor"])) == ""
