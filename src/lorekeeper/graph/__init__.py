"""LangGraph 单轮抽取图与编排器。"""

from lorekeeper.graph.orchestrator import ExtractionResult, TurnOrchestrator
from lorekeeper.graph.turn_graph import (
    RunHistory,
    TurnResources,
    build_turn_graph,
    build_unique_sorted_pairs,
    compile_turn_graph,
)

__all__ = [
    "ExtractionResult",
    "RunHistory",
    "TurnOrchestrator",
    "TurnResources",
    "build_turn_graph",
    "build_unique_sorted_pairs",
    "compile_turn_graph",
]
