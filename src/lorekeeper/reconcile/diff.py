"""对账算法：把预言机给出的权威列表与当前投影列表做大小写不敏感的差分。

- 合并（consolidation）：定期索取某一维度的完整列表，发出最小的增删事件；
- 确认（confirmation）：对已有条目逐一核验，未被确认的条目发出移除事件；
- 主题纠正：同一轮内不允许出现重复的 (角色对, 主题)，重复时撤销被纠正的事件。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, TypeVar

from lorekeeper.models.event import BaseEvent, RelationshipSubjectEvent
from lorekeeper.models.snapshot import pair_key
from lorekeeper.state.sets import contains_ci, dedupe_ci, diff_ci

E = TypeVar("E")


def diff_case_insensitive(
    projected: Iterable[str], canonical: Iterable[str]
) -> tuple[list[str], list[str]]:
    """返回 (removed, added)：removed 为投影中有而权威列表没有的，added 反之。"""
    return diff_ci(projected, canonical)


def consolidate(
    projected: Iterable[str],
    canonical: Iterable[str],
    make_removed: Callable[[str], E],
    make_added: Callable[[str], E],
) -> list[E]:
    """每个 removed 条目一个移除事件，每个 added 条目一个新增事件（先删后增）。"""
    removed, added = diff_case_insensitive(projected, canonical)
    return [make_removed(v) for v in removed] + [make_added(v) for v in added]


def filter_to_add(candidates: Iterable[str], current: Sequence[str]) -> list[str]:
    """增量抽取的新增项：只保留当前尚不存在的条目（大小写不敏感、去重）。"""
    return [c for c in dedupe_ci(candidates) if not contains_ci(current, c)]


def filter_to_remove(candidates: Iterable[str], current: Sequence[str]) -> list[str]:
    """增量抽取的移除项：只保留当前确实存在的条目，沿用当前列表中的写法。"""
    out: list[str] = []
    for c in dedupe_ci(candidates):
        for existing in current:
            if existing.lower() == c.lower() and existing not in out:
                out.append(existing)
    return out


def unconfirmed(projected: Iterable[str], confirmed: Iterable[str]) -> list[str]:
    """投影中未出现在“仍然成立”列表里的条目。"""
    confirmed = list(confirmed)
    return [item for item in projected if not contains_ci(confirmed, item)]


def subject_exists_in_turn(
    turn_events: Sequence[BaseEvent],
    pair: tuple[str, str],
    subject: str,
    exclude_event_id: str | None = None,
) -> bool:
    """本轮未撤销的事件中是否已有相同 (角色对, 主题)。

    角色对比较忽略顺序与大小写；主题按原值精确比较。
    """
    key = pair_key(*pair)
    for event in turn_events:
        if event.deleted or not isinstance(event, RelationshipSubjectEvent):
            continue
        if exclude_event_id is not None and event.id == exclude_event_id:
            continue
        if pair_key(*event.pair) == key and event.subject == subject:
            return True
    return False


@dataclass(frozen=True)
class SubjectCorrection:
    """主题纠正的决策结果。

    retract: 需要撤销的事件 ID；
    replacement_subject: 需要以新事件补发的主题，None 表示不补发。
    """

    retract: str | None
    replacement_subject: str | None


def plan_subject_correction(
    turn_events: Sequence[BaseEvent],
    event: RelationshipSubjectEvent,
    corrected_subject: str,
) -> SubjectCorrection:
    """纠正某条主题事件的值。

    若纠正后的值已在本轮出现（排除自身），撤销被纠正的事件而不补发重复值；
    否则撤销原事件并补发纠正后的值。值未变化时什么都不做。
    """
    if corrected_subject == event.subject:
        return SubjectCorrection(retract=None, replacement_subject=None)
    if subject_exists_in_turn(turn_events, event.pair, corrected_subject, exclude_event_id=event.id):
        return SubjectCorrection(retract=event.id, replacement_subject=None)
    return SubjectCorrection(retract=event.id, replacement_subject=corrected_subject)
