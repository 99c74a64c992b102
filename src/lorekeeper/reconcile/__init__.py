"""合并与确认对账算法。"""

from lorekeeper.reconcile.diff import (
    SubjectCorrection,
    consolidate,
    diff_case_insensitive,
    filter_to_add,
    filter_to_remove,
    plan_subject_correction,
    subject_exists_in_turn,
    unconfirmed,
)

__all__ = [
    "SubjectCorrection",
    "consolidate",
    "diff_case_insensitive",
    "filter_to_add",
    "filter_to_remove",
    "plan_subject_correction",
    "subject_exists_in_turn",
    "unconfirmed",
]
