"""测试共用的假生成器与上下文构造。"""

from __future__ import annotations

import json

import pytest

from lorekeeper.config.settings import ExtractionSettings
from lorekeeper.extractors.base import TurnContext
from lorekeeper.extractors.registry import all_extractor_names
from lorekeeper.generator.base import GenerationSettings, Generator, GeneratorError, GeneratorPrompt
from lorekeeper.models.chat import ChatContext, ChatMessage
from lorekeeper.models.snapshot import Source
from lorekeeper.state.event_store import EventStore
from lorekeeper.utils.tracker import ExtractionTracker


class ScriptedGenerator(Generator):
    """按系统提示词分派的脚本化生成器。

    测试把每个抽取器的系统提示词覆盖为抽取器名称，这里据此挑选预设回复；
    dict 会被序列化为 JSON，列表按调用次序依次弹出。
    """

    def __init__(self, replies: dict | None = None):
        self.replies = {k: list(v) if isinstance(v, list) else [v] for k, v in (replies or {}).items()}
        self.calls: list[dict] = []

    async def generate(self, prompt: GeneratorPrompt, settings: GenerationSettings) -> str:
        system = prompt.messages[0].content
        user = prompt.messages[-1].content
        self.calls.append({"name": system, "user": user, "temperature": settings.temperature})
        queue = self.replies.get(system)
        if not queue:
            raise GeneratorError(f"没有为 {system} 准备回复")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        return reply if isinstance(reply, str) else json.dumps(reply)

    def names(self) -> list[str]:
        return [c["name"] for c in self.calls]


def scripted_settings(**overrides) -> ExtractionSettings:
    """系统提示词替换为抽取器名称的配置，便于 ScriptedGenerator 分派。"""
    prompts = {name: name for name in [*all_extractor_names(), "initial_snapshot"]}
    return ExtractionSettings(custom_prompts=prompts, **overrides)


def make_chat(*texts: str, name1: str = "Sam", name2: str = "Alice") -> ChatContext:
    """交替生成用户 / 角色消息。"""
    return ChatContext(
        chat=[ChatMessage(mes=t, is_user=(i % 2 == 0)) for i, t in enumerate(texts)],
        name1=name1,
        name2=name2,
    )


def make_context(
    generator: Generator,
    chat: ChatContext,
    store: EventStore,
    message_id: int,
    settings: ExtractionSettings | None = None,
    tracker: ExtractionTracker | None = None,
) -> TurnContext:
    return TurnContext(
        generator=generator,
        chat=chat,
        settings=settings or scripted_settings(),
        store=store,
        current_message=Source(message_id=message_id),
        tracker=tracker,
    )


@pytest.fixture
def scripted():
    return ScriptedGenerator


@pytest.fixture
def context_factory():
    return make_context


@pytest.fixture
def chat_factory():
    return make_chat


@pytest.fixture
def settings_factory():
    return scripted_settings
