"""测试生成器边界：langchain 包装、取消与限流。"""

import asyncio
from typing import Any

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_core.outputs import ChatGeneration, ChatResult

from lorekeeper.generator.base import (
    GenerationSettings,
    GeneratorAbortError,
    GeneratorError,
    GeneratorPrompt,
    PromptMessage,
)
from lorekeeper.generator.chat_model import LangChainGenerator, extract_text, to_langchain_messages
from lorekeeper.generator.rate_limiter import RateLimiter


class BrokenChatModel(FakeListChatModel):
    def _call(self, *args: Any, **kwargs: Any) -> str:
        raise RuntimeError("provider down")


class SlowChatModel(FakeListChatModel):
    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        await asyncio.sleep(10)
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content="late"))])


def _prompt() -> GeneratorPrompt:
    return GeneratorPrompt.from_pair("You extract props.", "Messages: ...")


def _settings(abort_signal=None) -> GenerationSettings:
    return GenerationSettings(temperature=0.5, max_tokens=256, abort_signal=abort_signal)


def test_prompt_conversion():
    prompt = GeneratorPrompt(messages=[
        PromptMessage(role="system", content="s"),
        PromptMessage(role="user", content="u"),
        PromptMessage(role="assistant", content="a"),
    ])
    messages = to_langchain_messages(prompt)
    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage]


def test_extract_text_handles_content_parts():
    assert extract_text("plain") == "plain"
    assert extract_text([{"type": "text", "text": "a"}, "b", {"type": "image"}]) == "ab"


def test_generate_returns_model_text():
    generator = LangChainGenerator(FakeListChatModel(responses=['{"added": []}']))
    assert asyncio.run(generator.generate(_prompt(), _settings())) == '{"added": []}'


def test_provider_errors_become_generator_errors():
    generator = LangChainGenerator(BrokenChatModel(responses=["unused"]))
    with pytest.raises(GeneratorError) as exc_info:
        asyncio.run(generator.generate(_prompt(), _settings()))
    assert not isinstance(exc_info.value, GeneratorAbortError)


def test_aborted_before_send():
    async def run():
        signal = asyncio.Event()
        signal.set()
        generator = LangChainGenerator(FakeListChatModel(responses=["x"]))
        await generator.generate(_prompt(), _settings(signal))

    with pytest.raises(GeneratorAbortError):
        asyncio.run(run())


def test_abort_during_generation():
    """中止信号先于模型返回时立即取消。"""

    async def run():
        signal = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, signal.set)
        generator = LangChainGenerator(SlowChatModel(responses=["x"]))
        await asyncio.wait_for(generator.generate(_prompt(), _settings(signal)), timeout=2)

    with pytest.raises(GeneratorAbortError):
        asyncio.run(run())


def test_abort_leaves_no_pending_tasks():
    """取消后模型调用与信号等待都已结束。"""

    async def run():
        signal = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, signal.set)
        generator = LangChainGenerator(SlowChatModel(responses=["x"]))
        with pytest.raises(GeneratorAbortError):
            await generator.generate(_prompt(), _settings(signal))
        return asyncio.all_tasks() - {asyncio.current_task()}

    assert asyncio.run(run()) == set()


def test_completed_call_releases_abort_waiter():
    async def run():
        signal = asyncio.Event()
        generator = LangChainGenerator(FakeListChatModel(responses=["done"]))
        text = await generator.generate(_prompt(), _settings(signal))
        return text, asyncio.all_tasks() - {asyncio.current_task()}

    text, pending = asyncio.run(run())
    assert text == "done"
    assert pending == set()


def test_failed_call_with_abort_signal_releases_waiter():
    async def run():
        generator = LangChainGenerator(BrokenChatModel(responses=["unused"]))
        with pytest.raises(GeneratorError):
            await generator.generate(_prompt(), _settings(asyncio.Event()))
        return asyncio.all_tasks() - {asyncio.current_task()}

    assert asyncio.run(run()) == set()


# ── 限流 ──


def test_rate_limiter_rejects_zero_rpm():
    with pytest.raises(ValueError):
        RateLimiter(0)


def test_rate_limiter_bucket_and_refill():
    now = [0.0]
    limiter = RateLimiter(60, clock=lambda: now[0])

    async def drain():
        for _ in range(60):
            await limiter.wait_for_slot()

    asyncio.run(drain())
    assert limiter.available < 1

    now[0] = 2.0
    assert limiter.available == pytest.approx(2.0)

    now[0] = 1000.0
    assert limiter.available == 60


def test_rate_limiter_wait_is_abortable():
    now = [0.0]
    limiter = RateLimiter(1, clock=lambda: now[0])

    async def run():
        await limiter.wait_for_slot()
        signal = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, signal.set)
        await asyncio.wait_for(limiter.wait_for_slot(signal), timeout=2)

    with pytest.raises(GeneratorAbortError):
        asyncio.run(run())


def test_rate_limiter_waits_for_refill():
    calls = []
    limiter = RateLimiter(600)

    async def run():
        for _ in range(601):
            await limiter.wait_for_slot()
            calls.append(1)

    asyncio.run(run())
    assert len(calls) == 601
