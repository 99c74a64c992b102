"""大小写不敏感的有序集合操作。

情绪、感受、道具、名字等字符串的成员比较一律忽略大小写，
保留首次出现时的原始写法。
"""

from __future__ import annotations

from typing import Iterable


def contains_ci(items: Iterable[str], value: str) -> bool:
    lowered = value.lower()
    return any(item.lower() == lowered for item in items)


def add_ci(items: list[str], value: str) -> None:
    """追加 value，若已存在（忽略大小写）则不变。"""
    if not contains_ci(items, value):
        items.append(value)


def remove_ci(items: list[str], value: str) -> None:
    """移除 value 的所有大小写变体；不存在时不做任何事。"""
    lowered = value.lower()
    items[:] = [item for item in items if item.lower() != lowered]


def dedupe_ci(items: Iterable[str]) -> list[str]:
    out: list[str] = []
    for item in items:
        cleaned = item.strip()
        if cleaned:
            add_ci(out, cleaned)
    return out


def diff_ci(projected: Iterable[str], canonical: Iterable[str]) -> tuple[list[str], list[str]]:
    """比较当前列表与权威列表，返回 (需移除, 需新增)。"""
    projected = list(projected)
    canonical = dedupe_ci(canonical)
    removed = [item for item in projected if not contains_ci(canonical, item)]
    added = [item for item in canonical if not contains_ci(projected, item)]
    return removed, added
