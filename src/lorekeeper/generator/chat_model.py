"""基于 langchain-core 聊天模型的生成器实现。"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from lorekeeper.generator.base import (
    GenerationSettings,
    Generator,
    GeneratorAbortError,
    GeneratorError,
    GeneratorPrompt,
)
from lorekeeper.generator.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def extract_text(content: str | list | Any) -> str:
    """从 LLM 响应中提取纯文本内容。

    不同模型提供商返回的 content 格式不同：
    - OpenAI: 直接返回 str
    - Google Gemini: 返回 list[dict]，每个 dict 包含 'type' 和 'text'
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)


def to_langchain_messages(prompt: GeneratorPrompt) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for message in prompt.messages:
        match message.role:
            case "system":
                messages.append(SystemMessage(content=message.content))
            case "assistant":
                messages.append(AIMessage(content=message.content))
            case _:
                messages.append(HumanMessage(content=message.content))
    return messages


class LangChainGenerator(Generator):
    """把任意 BaseChatModel 包装成生成器。

    - 调用前先等待限流器放行；
    - 调用与中止信号竞速，中止先到则取消调用并抛出 GeneratorAbortError；
    - 其余异常统一转换为 GeneratorError。
    """

    def __init__(self, model: BaseChatModel, rate_limiter: RateLimiter | None = None):
        self.model = model
        self.rate_limiter = rate_limiter

    async def generate(self, prompt: GeneratorPrompt, settings: GenerationSettings) -> str:
        if settings.aborted:
            raise GeneratorAbortError("请求在发出前已被取消")

        if self.rate_limiter is not None:
            await self.rate_limiter.wait_for_slot(settings.abort_signal)

        messages = to_langchain_messages(prompt)
        call = self.model.ainvoke(
            messages,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )

        if settings.abort_signal is None:
            response = await self._await_call(call)
            return extract_text(response.content)

        call_task = asyncio.ensure_future(call)
        abort_task = asyncio.ensure_future(settings.abort_signal.wait())
        try:
            done, _ = await asyncio.wait({call_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
            if call_task not in done:
                raise GeneratorAbortError("生成过程中请求被取消")
            response = await self._await_call(call_task)
        finally:
            await _cancel_and_wait(call_task)
            await _cancel_and_wait(abort_task)
        return extract_text(response.content)

    @staticmethod
    async def _await_call(call) -> BaseMessage:
        try:
            return await call
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("模型调用失败: %s: %s", type(e).__name__, e)
            raise GeneratorError(f"{type(e).__name__}: {str(e)[:200]}") from e


async def _cancel_and_wait(task: asyncio.Future) -> None:
    """取消尚未完成的任务并等它真正结束，不留悬挂任务。"""
    if task.done():
        return
    task.cancel()
    await asyncio.wait({task})
