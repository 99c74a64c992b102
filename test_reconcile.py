"""测试合并 / 确认对账算法。"""

from lorekeeper.models.event import RelationshipSubjectEvent
from lorekeeper.models.snapshot import Source
from lorekeeper.reconcile import (
    consolidate,
    diff_case_insensitive,
    filter_to_add,
    filter_to_remove,
    plan_subject_correction,
    subject_exists_in_turn,
    unconfirmed,
)
from lorekeeper.state.sets import add_ci, dedupe_ci, remove_ci


def _subject(subject: str, message_id: int = 4, pair=("Alice", "Bob")) -> RelationshipSubjectEvent:
    return RelationshipSubjectEvent(source=Source(message_id=message_id), pair=pair, subject=subject)


def test_case_only_difference_emits_nothing():
    events = consolidate(
        ["Happy", "EXCITED"],
        ["happy", "excited"],
        lambda v: ("removed", v),
        lambda v: ("added", v),
    )
    assert events == []


def test_consolidate_removes_before_adds():
    events = consolidate(
        ["tired", "calm"],
        ["calm", "anxious"],
        lambda v: ("removed", v),
        lambda v: ("added", v),
    )
    assert events == [("removed", "tired"), ("added", "anxious")]


def test_diff_dedupes_canonical_list():
    removed, added = diff_case_insensitive([], ["Tense", "tense", " ", "wary"])
    assert removed == []
    assert added == ["Tense", "wary"]


def test_unconfirmed_keeps_projection_spelling():
    projected = ["menu", "coffee cup", "Sugar Packets", "newspaper"]
    assert unconfirmed(projected, ["MENU", "coffee cup", "newspaper"]) == ["Sugar Packets"]


def test_filter_to_add_skips_existing():
    assert filter_to_add(["Menu", "napkin", "Napkin"], ["menu"]) == ["napkin"]


def test_filter_to_remove_only_present():
    assert filter_to_remove(["MENU", "umbrella"], ["menu", "coffee cup"]) == ["menu"]


def test_ordered_set_helpers():
    items = ["calm"]
    add_ci(items, "Calm")
    add_ci(items, "happy")
    assert items == ["calm", "happy"]

    remove_ci(items, "HAPPY")
    remove_ci(items, "angry")
    assert items == ["calm"]

    assert dedupe_ci([" a ", "A", "b", ""]) == ["a", "b"]


# ── 主题去重 ──


def test_correction_to_existing_subject_retracts():
    """纠正为本轮已有的主题时只撤销，不补发。"""
    conflict = _subject("conflict")
    trust = _subject("trust")

    plan = plan_subject_correction([conflict, trust], trust, "conflict")
    assert plan.retract == trust.id
    assert plan.replacement_subject is None


def test_correction_to_new_subject_replaces():
    conflict = _subject("conflict")
    trust = _subject("trust")

    plan = plan_subject_correction([conflict, trust], trust, "attraction")
    assert plan.retract == trust.id
    assert plan.replacement_subject == "attraction"


def test_correction_excludes_own_event():
    trust = _subject("trust")
    assert not subject_exists_in_turn([trust], trust.pair, "trust", exclude_event_id=trust.id)


def test_unchanged_correction_is_noop():
    trust = _subject("trust")
    plan = plan_subject_correction([trust], trust, "trust")
    assert plan.retract is None
    assert plan.replacement_subject is None


def test_subject_from_other_turn_is_not_duplicate():
    """只比较本轮事件；其他轮次的同主题不在扫描范围内。"""
    trust = _subject("trust", message_id=4)
    assert not subject_exists_in_turn([trust], ("Alice", "Bob"), "conflict")

    plan = plan_subject_correction([trust], trust, "conflict")
    assert plan.replacement_subject == "conflict"


def test_subject_scan_ignores_pair_order_and_retracted():
    conflict = _subject("conflict", pair=("Alice", "Bob"))
    assert subject_exists_in_turn([conflict], ("bob", "alice"), "conflict")

    conflict.deleted = True
    assert not subject_exists_in_turn([conflict], ("Alice", "Bob"), "conflict")
