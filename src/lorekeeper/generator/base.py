"""生成器协作者边界：向文本生成模型发出请求并取回文本。"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field


class GeneratorError(Exception):
    """生成失败（网络、提供商错误、超时等）。"""


class GeneratorAbortError(GeneratorError):
    """请求被外部中止信号取消。调用方不应对其重试。"""


class PromptMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class GeneratorPrompt(BaseModel):
    messages: list[PromptMessage] = Field(default_factory=list)

    @classmethod
    def from_pair(cls, system: str, user: str) -> GeneratorPrompt:
        return cls(
            messages=[
                PromptMessage(role="system", content=system),
                PromptMessage(role="user", content=user),
            ]
        )


@dataclass
class GenerationSettings:
    temperature: float
    max_tokens: int
    abort_signal: asyncio.Event | None = None

    @property
    def aborted(self) -> bool:
        return self.abort_signal is not None and self.abort_signal.is_set()


class Generator(ABC):
    """文本生成器接口。

    实现可以抛出 GeneratorAbortError（取消）或 GeneratorError（其他失败）。
    """

    @abstractmethod
    async def generate(self, prompt: GeneratorPrompt, settings: GenerationSettings) -> str:
        ...
