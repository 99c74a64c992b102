"""单轮抽取图：core -> characters -> reconciliation -> chapter -> commit。

每个阶段节点内部并发调度本阶段被触发的抽取器（受 max_concurrent_requests 限制），
所有任务结束后按注册顺序合并结果。阶段之间是硬屏障：同一阶段的抽取器看到的是
阶段开始时的 turn_events，后一阶段才能看到前一阶段的产出。
事件只在 commit 节点一次性写入存储；被取消的轮次不写入任何事件。
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from lorekeeper.extractors.base import (
    BaseExtractor,
    EventExtractor,
    PerCharacterExtractor,
    PerPairExtractor,
    TurnContext,
)
from lorekeeper.extractors.name_resolution import resolve_names_in_events
from lorekeeper.extractors.registry import Phase, default_phases
from lorekeeper.extractors.strategies import evaluate_run_strategy
from lorekeeper.generator.base import GeneratorAbortError
from lorekeeper.models.event import Event
from lorekeeper.state.turn_state import ExtractorFailure, SkipRecord, TurnState
from lorekeeper.utils.tracker import (
    SKIP_COOLDOWN,
    SKIP_DISABLED,
    SKIP_NO_TARGETS,
    SKIP_NOT_TRIGGERED,
)

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────
# 运行时资源
# ────────────────────────────────────────────


@dataclass
class RunHistory:
    """各抽取器运行过 / 产出过事件的消息序号，归编排器实例所有。"""

    ran_at: dict[str, list[int]] = field(default_factory=dict)
    produced_at: dict[str, list[int]] = field(default_factory=dict)

    def mark_ran(self, name: str, message_id: int) -> None:
        marks = self.ran_at.setdefault(name, [])
        if message_id not in marks:
            marks.append(message_id)

    def mark_produced(self, name: str, message_id: int) -> None:
        marks = self.produced_at.setdefault(name, [])
        if message_id not in marks:
            marks.append(message_id)

    def forget(self, message_id: int) -> None:
        """撤回某条消息的运行记录（该轮被取消、未提交）。"""
        for marks in (*self.ran_at.values(), *self.produced_at.values()):
            if message_id in marks:
                marks.remove(message_id)


@dataclass
class TurnResources:
    """随 config["configurable"]["turn"] 传入各节点的本轮资源。"""

    ctx: TurnContext
    history: RunHistory


def _resources(config: RunnableConfig) -> TurnResources:
    return config["configurable"]["turn"]


def build_unique_sorted_pairs(names: Sequence[str]) -> list[tuple[str, str]]:
    """在场角色的所有无序对，每对内部按名字排序，整体按字典序排列。"""
    unique: list[str] = []
    for name in names:
        if name and not any(name.lower() == u.lower() for u in unique):
            unique.append(name)
    pairs = {
        tuple(sorted((a, b), key=str.lower)) for a, b in itertools.combinations(unique, 2)
    }
    return sorted(pairs, key=lambda p: (p[0].lower(), p[1].lower()))


# ────────────────────────────────────────────
# 阶段节点
# ────────────────────────────────────────────


@dataclass
class _Job:
    extractor: BaseExtractor
    target: str | tuple[str, str] | None = None

    @property
    def label(self) -> str | None:
        if isinstance(self.target, tuple):
            return "|".join(self.target)
        return self.target


def _plan_jobs(
    phase: Phase, res: TurnResources, turn_events: list[Event]
) -> tuple[list[_Job], list[SkipRecord]]:
    """决定本阶段哪些抽取器运行、对哪些目标运行。"""
    ctx = res.ctx
    jobs: list[_Job] = []
    skipped: list[SkipRecord] = []
    present: list[str] | None = None

    for extractor in phase.extractors:
        name = extractor.name
        run_ctx = ctx.run_context(
            turn_events,
            res.history.ran_at.get(name, ()),
            res.history.produced_at.get(name, ()),
        )
        reason = None
        if not ctx.settings.track.is_enabled(extractor.category):
            reason = SKIP_DISABLED
        elif not evaluate_run_strategy(extractor.run_strategy, run_ctx):
            reason = SKIP_NOT_TRIGGERED
        elif ctx.backoff is not None and ctx.backoff.is_cooling_down(extractor.prompt_name):
            reason = SKIP_COOLDOWN
            logger.warning(
                "%s 处于冷却期（剩余 %.0f 秒），本轮跳过",
                name,
                ctx.backoff.remaining(extractor.prompt_name),
            )

        if reason is None and isinstance(extractor, (PerCharacterExtractor, PerPairExtractor)):
            if present is None:
                present = ctx.projection(turn_events).characters_present
            if isinstance(extractor, PerCharacterExtractor):
                targets: list[Any] = list(present)
            else:
                targets = build_unique_sorted_pairs(present)
            if not targets:
                reason = SKIP_NO_TARGETS
            else:
                jobs.extend(_Job(extractor, t) for t in targets)
        elif reason is None:
            jobs.append(_Job(extractor))

        if reason is not None:
            skipped.append(SkipRecord(name, reason))
            if ctx.tracker is not None:
                ctx.tracker.record_skip(name, ctx.message_id, reason)
        else:
            res.history.mark_ran(name, ctx.message_id)
    return jobs, skipped


def _apply_retractions(state: TurnState) -> list[Event]:
    """本轮事件列表，已记录撤销的事件一律带上 deleted 标记。"""
    retracted = set(state.get("retracted", []))
    return [
        e.model_copy(update={"deleted": True}) if e.id in retracted and not e.deleted else e
        for e in state.get("turn_events", [])
    ]


async def _run_job(job: _Job, ctx: TurnContext, turn_events: list[Event]) -> list[Event]:
    extractor = job.extractor
    if isinstance(extractor, PerCharacterExtractor):
        return await extractor.run(ctx, turn_events, job.target)
    if isinstance(extractor, PerPairExtractor):
        return await extractor.run(ctx, turn_events, job.target)
    if isinstance(extractor, EventExtractor):
        return await extractor.run(ctx, turn_events)
    raise TypeError(f"未知抽取器形态: {type(extractor).__name__}")


def _create_phase_node(phase: Phase):
    """创建阶段节点。"""

    async def phase_node(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
        res = _resources(config)
        ctx = res.ctx
        if state.get("aborted") or (ctx.abort_signal is not None and ctx.abort_signal.is_set()):
            logger.info("[%s] 本轮已取消，跳过阶段", phase.name)
            return {"aborted": True}

        turn_events = _apply_retractions(state)
        deleted_before = {e.id for e in turn_events if e.deleted}
        jobs, skipped = _plan_jobs(phase, res, turn_events)
        if not jobs:
            return {"skipped": skipped}

        logger.info(
            "[%s] 消息 %d: 运行 %d 个任务 (%s)",
            phase.name,
            ctx.message_id,
            len(jobs),
            ", ".join(sorted({j.extractor.name for j in jobs})),
        )
        semaphore = asyncio.Semaphore(max(1, ctx.settings.max_concurrent_requests))

        async def guarded(job: _Job) -> list[Event]:
            async with semaphore:
                if ctx.tracker is not None:
                    ctx.tracker.record_attempt(job.extractor.name)
                return await _run_job(job, ctx, turn_events)

        results = await asyncio.gather(*(guarded(j) for j in jobs), return_exceptions=True)

        # 按注册顺序合并
        produced: list[Event] = []
        failures: list[ExtractorFailure] = []
        aborted = False
        for job, result in zip(jobs, results):
            name = job.extractor.name
            if isinstance(result, (GeneratorAbortError, asyncio.CancelledError)):
                aborted = True
                failures.append(ExtractorFailure(name, job.label, str(result) or "cancelled", cancelled=True))
                if ctx.tracker is not None:
                    ctx.tracker.record_cancel(name, ctx.message_id, job.label)
                continue
            if isinstance(result, BaseException):
                logger.error("[%s] %s 抽取异常: %s", phase.name, name, result, exc_info=result)
                failures.append(ExtractorFailure(name, job.label, f"{type(result).__name__}: {result}"))
                if ctx.tracker is not None:
                    ctx.tracker.record_failure(name, ctx.message_id, str(result), job.label)
                continue
            if ctx.tracker is not None:
                ctx.tracker.record_completed(name, ctx.message_id, len(result), job.label)
            if result:
                res.history.mark_produced(name, ctx.message_id)
                produced.extend(result)

        unresolved: list[str] = []
        if produced:
            produced, unresolved = resolve_names_in_events(
                produced, ctx.projection(turn_events), extra_names=[ctx.chat.name1]
            )
        retracted = [e.id for e in turn_events if e.deleted and e.id not in deleted_before]

        update: dict[str, Any] = {
            "turn_events": produced,
            "retracted": retracted,
            "failures": failures,
            "skipped": skipped,
            "unresolved_names": unresolved,
        }
        if aborted:
            update["aborted"] = True
        return update

    phase_node.__name__ = f"{phase.name}_phase"
    return phase_node


# ────────────────────────────────────────────
# 提交节点
# ────────────────────────────────────────────


def _create_commit_node():
    """创建提交节点：把本轮事件按合并顺序一次性追加到存储。

    被取消的轮次不写入任何事件，也不保留运行记录，重新处理该消息时从零开始。
    """

    def commit_node(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
        res = _resources(config)
        ctx = res.ctx
        if state.get("aborted"):
            res.history.forget(ctx.message_id)
            logger.info(
                "消息 %d: 本轮已取消，丢弃 %d 条未提交事件", ctx.message_id, len(state.get("turn_events", []))
            )
            return {"committed": 0}
        events = _apply_retractions(state)
        if events:
            ctx.store.append_events(events)
        live = sum(1 for e in events if not e.deleted)
        logger.info("消息 %d: 提交 %d 条事件（其中 %d 条已撤销）", ctx.message_id, len(events), len(events) - live)
        return {"committed": len(events)}

    return commit_node


# ────────────────────────────────────────────
# 图构建
# ────────────────────────────────────────────


def build_turn_graph(phases: list[Phase] | None = None) -> StateGraph:
    """构建单轮抽取图。"""
    phases = phases or default_phases()
    workflow = StateGraph(TurnState)

    previous = START
    for phase in phases:
        node_name = f"{phase.name}_phase"
        workflow.add_node(node_name, _create_phase_node(phase))
        workflow.add_edge(previous, node_name)
        previous = node_name

    workflow.add_node("commit", _create_commit_node())
    workflow.add_edge(previous, "commit")
    workflow.add_edge("commit", END)
    return workflow


def compile_turn_graph(phases: list[Phase] | None = None):
    """构建并编译单轮抽取图。本轮状态只存在于一次调用内，不挂 Checkpointer。"""
    return build_turn_graph(phases).compile()
