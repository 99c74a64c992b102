"""单轮抽取的图状态定义（LangGraph StateGraph 状态）。"""

from __future__ import annotations

from dataclasses import dataclass
from operator import add
from typing import Annotated

from typing_extensions import TypedDict

from lorekeeper.models.event import Event


@dataclass(frozen=True)
class ExtractorFailure:
    extractor: str
    target: str | None
    error: str
    cancelled: bool = False


@dataclass(frozen=True)
class SkipRecord:
    extractor: str
    reason: str


class TurnState(TypedDict, total=False):
    """LangGraph 单轮图的状态。

    列表字段使用 add 归并，各阶段节点只返回本阶段新增的部分。
    """

    # ── 本轮产出 ──
    turn_events: Annotated[list[Event], add]
    retracted: Annotated[list[str], add]  # 本轮被撤销的事件 ID

    # ── 诊断 ──
    failures: Annotated[list[ExtractorFailure], add]
    skipped: Annotated[list[SkipRecord], add]
    unresolved_names: Annotated[list[str], add]

    # ── 控制 ──
    aborted: bool
    committed: int
