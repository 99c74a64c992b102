"""测试单轮抽取图与编排器。"""

import asyncio
import json
from datetime import datetime

import pytest
from langchain_core.language_models import FakeListChatModel

from lorekeeper.extractors.base import EventExtractor
from lorekeeper.extractors.consolidation import SubjectsConfirmationExtractor
from lorekeeper.extractors.core import TimeChangeExtractor
from lorekeeper.extractors.parse import BackoffConfig, PromptBackoff
from lorekeeper.extractors.props import PropsChangeExtractor, PropsConfirmationExtractor
from lorekeeper.extractors.registry import Phase, all_extractor_names, default_phases
from lorekeeper.extractors.relationships import RelationshipSubjectsExtractor
from lorekeeper.generator.base import GeneratorAbortError
from lorekeeper.generator.chat_model import LangChainGenerator
from lorekeeper.graph.orchestrator import TurnOrchestrator
from lorekeeper.graph.turn_graph import build_unique_sorted_pairs
from lorekeeper.models.chat import ChatMessage
from lorekeeper.models.event import LocationPropAddedEvent, LocationPropRemovedEvent, TimeDeltaEvent
from lorekeeper.models.snapshot import CharacterState, LocationState, Snapshot, Source
from lorekeeper.prompts import available_prompts
from lorekeeper.state.event_store import EventStore
from lorekeeper.state.turn_state import SkipRecord
from lorekeeper.utils.tracker import ExtractionTracker


def _cafe_store() -> EventStore:
    return EventStore(
        initial_snapshot=Snapshot(
            source=Source(message_id=0),
            time=datetime(2024, 5, 1, 9, 0),
            location=LocationState(area="Downtown", place="Cafe", props=["menu", "coffee cup", "sugar packets"]),
            characters={"Alice": CharacterState(name="Alice"), "Bob": CharacterState(name="Bob")},
            characters_present=["Alice", "Bob"],
        )
    )


def _chat(chat_factory):
    return chat_factory(
        "We sit down at the cafe.",
        "Alice reads the menu.",
        "Bob unfolds a newspaper. The sugar packets are gone.",
        "Alice and Bob argue about who took the sugar.",
    )


PROPS_PHASES = [
    Phase("characters", (PropsChangeExtractor(),)),
    Phase("reconciliation", (PropsConfirmationExtractor(),)),
]


class BrokenExtractor(EventExtractor):
    name = "broken"
    category = "props"

    async def run(self, ctx, turn_events):
        raise RuntimeError("boom")


# ── 注册表 ──


def test_default_registry_order():
    phases = default_phases()
    assert [p.name for p in phases] == ["core", "characters", "reconciliation", "chapter"]
    names = all_extractor_names(phases)
    assert len(names) == len(set(names))
    assert names.index("props_change") < names.index("props_confirmation")
    characters = [e.name for e in phases[1].extractors]
    assert {"appeared_character_outfit", "nickname_extraction"} <= set(characters)
    assert names[-1] == "chapter_description"


def test_every_extractor_has_a_system_prompt():
    """每个注册抽取器都有同名的系统提示词文件。"""
    prompts = set(available_prompts())
    assert set(all_extractor_names()) <= prompts
    assert "initial_snapshot" in prompts


def test_unique_sorted_pairs():
    assert build_unique_sorted_pairs(["Bob", "alice", "Carol", "Alice"]) == [
        ("alice", "Bob"),
        ("alice", "Carol"),
        ("Bob", "Carol"),
    ]
    assert build_unique_sorted_pairs(["Alice"]) == []


# ── 单轮 ──


def test_orchestrator_requires_model_or_generator():
    with pytest.raises(ValueError):
        TurnOrchestrator()


def test_message_out_of_range(scripted, chat_factory, settings_factory):
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=scripted({}), store=_cafe_store())
    with pytest.raises(IndexError):
        asyncio.run(orchestrator.process_turn(_chat(chat_factory), 10))


def test_first_turn_installs_initial_snapshot(scripted, chat_factory, settings_factory):
    generator = scripted({
        "initial_snapshot": {
            "location": {"area": "Downtown", "place": "Cafe", "props": ["menu"]},
            "characters_present": ["Alice"],
        }
    })
    store = EventStore()
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=generator, store=store)

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 0))

    assert result.initial_snapshot_created
    assert result.events == []
    assert store.initial_snapshot.location.props == ["menu"]
    assert generator.names() == ["initial_snapshot"]


def test_failed_initial_snapshot_is_retried_next_turn(scripted, chat_factory, settings_factory):
    generator = scripted({"initial_snapshot": "garbage"})
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=generator)

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 0))

    assert not result.initial_snapshot_created
    assert result.failures[0].extractor == "initial_snapshot"
    assert not orchestrator.store.has_initial_snapshot


def test_props_confirmation_across_phases(scripted, chat_factory, settings_factory):
    """第一阶段新增道具，第二阶段确认后只移除未被确认的旧道具。"""
    generator = scripted({
        "props_change": {"added": ["newspaper"]},
        "props_confirmation": {"confirmed": ["menu", "coffee cup", "newspaper"]},
    })
    store = _cafe_store()
    orchestrator = TurnOrchestrator(
        settings=settings_factory(), generator=generator, store=store, phases=PROPS_PHASES
    )

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 2))

    assert [(type(e), e.prop) for e in result.events] == [
        (LocationPropAddedEvent, "newspaper"),
        (LocationPropRemovedEvent, "sugar packets"),
    ]
    assert generator.names() == ["props_change", "props_confirmation"]
    snapshot = store.project_state_at_message(2)
    assert snapshot.location.props == ["menu", "coffee cup", "newspaper"]


def test_same_phase_extractors_do_not_see_each_other(scripted, chat_factory, settings_factory):
    generator = scripted({"props_change": {"added": ["newspaper"]}})
    phases = [Phase("all", (PropsChangeExtractor(), PropsConfirmationExtractor()))]
    orchestrator = TurnOrchestrator(
        settings=settings_factory(), generator=generator, store=_cafe_store(), phases=phases
    )

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 2))

    assert SkipRecord("props_confirmation", "not_triggered") in result.skipped
    assert len(result.events) == 1


def test_rejected_subject_is_committed_as_retracted(scripted, chat_factory, settings_factory):
    generator = scripted({
        "relationship_subjects": {"subjects": [{"pair": ["Alice", "Bob"], "subject": "argument"}]},
        "subjects_confirmation": {"results": [{"index": 0, "result": "reject"}]},
    })
    store = _cafe_store()
    phases = [
        Phase("characters", (RelationshipSubjectsExtractor(),)),
        Phase("reconciliation", (SubjectsConfirmationExtractor(),)),
    ]
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=generator, store=store, phases=phases)

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 3))

    assert len(result.events) == 1
    assert result.events[0].deleted
    assert result.active_events == []
    assert store.project_state_at_message(3).get_relationship("Alice", "Bob") is None


def test_corrected_subject_replaces_original(scripted, chat_factory, settings_factory):
    generator = scripted({
        "relationship_subjects": {"subjects": [{"pair": ["Alice", "Bob"], "subject": "trust"}]},
        "subjects_confirmation": {
            "results": [{"index": 0, "result": "wrong_subject", "correct_subject": "argument"}]
        },
    })
    store = _cafe_store()
    phases = [
        Phase("characters", (RelationshipSubjectsExtractor(),)),
        Phase("reconciliation", (SubjectsConfirmationExtractor(),)),
    ]
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=generator, store=store, phases=phases)

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 3))

    assert [e.subject for e in result.active_events] == ["argument"]
    assert store.project_state_at_message(3).get_relationship("Alice", "Bob").subjects == ["argument"]


def test_extractor_exception_is_isolated(scripted, chat_factory, settings_factory):
    generator = scripted({"props_change": {"added": ["newspaper"]}})
    tracker = ExtractionTracker()
    phases = [Phase("characters", (BrokenExtractor(), PropsChangeExtractor()))]
    orchestrator = TurnOrchestrator(
        settings=settings_factory(), generator=generator, store=_cafe_store(), phases=phases, tracker=tracker
    )

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 2))

    assert [f.extractor for f in result.failures] == ["broken"]
    assert not result.failures[0].cancelled
    assert len(result.events) == 1
    assert tracker.get_stats()["broken"].failures == 1


def test_aborted_turn_commits_nothing(scripted, chat_factory, settings_factory):
    """取消的轮次不提交任何事件，后续阶段也不再运行。"""
    abort_signal = asyncio.Event()

    class AbortingGenerator(scripted):
        async def generate(self, prompt, settings):
            if prompt.messages[0].content == "relationship_subjects":
                abort_signal.set()
                raise GeneratorAbortError("用户取消")
            return await super().generate(prompt, settings)

    generator = AbortingGenerator({
        "props_change": {"added": ["newspaper"]},
        "props_confirmation": {"confirmed": ["menu"]},
    })
    store = _cafe_store()
    phases = [
        Phase("characters", (PropsChangeExtractor(), RelationshipSubjectsExtractor())),
        Phase("reconciliation", (PropsConfirmationExtractor(),)),
    ]
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=generator, store=store, phases=phases)

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 2, abort_signal=abort_signal))

    assert result.aborted
    assert [f.extractor for f in result.failures if f.cancelled] == ["relationship_subjects"]
    assert result.events == []
    assert store.events == []
    assert "props_confirmation" not in generator.names()
    assert orchestrator.history.ran_at.get("props_change") == []


def test_reprocessing_an_aborted_turn_applies_events_once(scripted, chat_factory, settings_factory):
    """取消后重新处理同一条消息，时间增量只生效一次。"""
    abort_signal = asyncio.Event()

    class AbortOnceGenerator(scripted):
        aborted = False

        async def generate(self, prompt, settings):
            if prompt.messages[0].content == "props_change" and not self.aborted:
                self.aborted = True
                abort_signal.set()
                raise GeneratorAbortError("用户取消")
            return await super().generate(prompt, settings)

    generator = AbortOnceGenerator({
        "time_change": {"changed": True, "delta": {"hours": 2}},
        "props_change": {"added": ["newspaper"]},
    })
    store = _cafe_store()
    phases = [
        Phase("core", (TimeChangeExtractor(),)),
        Phase("characters", (PropsChangeExtractor(),)),
    ]
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=generator, store=store, phases=phases)
    chat = _chat(chat_factory)

    first = asyncio.run(orchestrator.process_turn(chat, 2, abort_signal=abort_signal))
    assert first.aborted
    assert store.events == []

    second = asyncio.run(orchestrator.process_turn(chat, 2, abort_signal=asyncio.Event()))

    assert not second.aborted
    assert [type(e) for e in store.events] == [TimeDeltaEvent, LocationPropAddedEvent]
    snapshot = store.project_state_at_message(2)
    assert snapshot.time == datetime(2024, 5, 1, 11, 0)
    assert "newspaper" in snapshot.location.props


def test_cooldown_skips_extractor(scripted, chat_factory, settings_factory):
    generator = scripted({"props_change": {"added": ["newspaper"]}})
    backoff = PromptBackoff(configs={"props_change": BackoffConfig(failure_threshold=2)})
    backoff.record_failure("props_change")
    backoff.record_failure("props_change")
    orchestrator = TurnOrchestrator(
        settings=settings_factory(),
        generator=generator,
        store=_cafe_store(),
        phases=PROPS_PHASES[:1],
        backoff=backoff,
    )

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 2))

    assert SkipRecord("props_change", "cooldown") in result.skipped
    assert generator.calls == []


def test_unknown_names_are_reported(scripted, chat_factory, settings_factory):
    generator = scripted({"relationship_subjects": {"subjects": [{"pair": ["alice", "bob"], "subject": "trust"}]}})
    store = _cafe_store()
    phases = [Phase("characters", (RelationshipSubjectsExtractor(),))]
    orchestrator = TurnOrchestrator(settings=settings_factory(), generator=generator, store=store, phases=phases)

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 3))

    assert result.events[0].pair == ("Alice", "Bob")
    assert result.unresolved_names == []


# ── 整段对话 ──


def test_process_chat_skips_system_messages(scripted, chat_factory, settings_factory):
    chat = _chat(chat_factory)
    chat.chat.insert(2, ChatMessage(mes="[system note]", is_system=True))
    generator = scripted({"props_change": {}})
    orchestrator = TurnOrchestrator(
        settings=settings_factory(), generator=generator, store=_cafe_store(), phases=PROPS_PHASES[:1]
    )
    seen: list[int] = []

    results = asyncio.run(orchestrator.process_chat(chat, on_turn=lambda r: seen.append(r.message_id)))

    assert seen == [1, 3, 4]
    assert [r.message_id for r in results] == seen
    assert orchestrator.next_message_to_process() == 5


# ── 生成器资源 ──


def test_langchain_model_end_to_end(chat_factory, settings_factory):
    model = FakeListChatModel(responses=[
        json.dumps({"added": ["newspaper"]}),
        "```json\n" + json.dumps({"confirmed": ["menu", "coffee cup", "newspaper"]}) + "\n```",
    ])
    store = _cafe_store()
    orchestrator = TurnOrchestrator(settings=settings_factory(), model=model, store=store, phases=PROPS_PHASES)

    result = asyncio.run(orchestrator.process_turn(_chat(chat_factory), 2))

    assert [e.prop for e in result.active_events] == ["newspaper", "sugar packets"]


def test_rate_limiter_rebuilt_only_on_rpm_change(settings_factory):
    orchestrator = TurnOrchestrator(settings=settings_factory(), model=FakeListChatModel(responses=["{}"]))
    limiter = orchestrator.rate_limiter
    generator = orchestrator.generator
    assert isinstance(generator, LangChainGenerator)
    assert generator.rate_limiter is limiter

    orchestrator.update_settings(settings_factory(max_concurrent_requests=2))
    assert orchestrator.rate_limiter is limiter
    assert orchestrator.generator is generator

    orchestrator.update_settings(settings_factory(max_requests_per_minute=30))
    assert orchestrator.rate_limiter is not limiter
    assert orchestrator.rate_limiter.max_requests_per_minute == 30
    assert orchestrator.generator.rate_limiter is orchestrator.rate_limiter
