"""回复解析：容错 JSON 提取、带重试的生成-解析循环与提示词退避。"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from lorekeeper.generator.base import (
    GenerationSettings,
    Generator,
    GeneratorAbortError,
    GeneratorError,
    GeneratorPrompt,
)
from lorekeeper.utils.tracker import ExtractionTracker

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def extract_json(text: str) -> Any:
    """从 LLM 输出中提取 JSON 数据。

    支持从 markdown 代码块和纯文本中提取。
    """
    # 尝试从 ```json ... ``` 代码块中提取
    try:
        if "```json" in text:
            start = text.index("```json") + len("```json")
            end = text.index("```", start)
            text = text[start:end].strip()
        elif "```" in text:
            start = text.index("```") + 3
            # 跳过可能的语言标记行
            if "\n" in text[start : start + 20]:
                start = text.index("\n", start) + 1
            end = text.index("```", start)
            text = text[start:end].strip()
    except ValueError:
        # 代码块标记不完整，交给下面的 { } 定位
        pass

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        error = e
    # 依次尝试最外层的 { } 与 [ ]
    for opener, closer in (("{", "}"), ("[", "]")):
        first = text.find(opener)
        last = text.rfind(closer)
        if first == -1 or last <= first:
            continue
        try:
            return json.loads(text[first : last + 1])
        except json.JSONDecodeError as e:
            error = e
    raise error


def parse_response(text: str, response_model: type[T]) -> T | None:
    """解析并校验回复；无效 JSON 或缺少必填字段时返回 None。"""
    try:
        data = extract_json(text)
    except (json.JSONDecodeError, ValueError) as e:
        logger.debug("回复不是有效 JSON: %s", e)
        return None
    try:
        return response_model.model_validate(data)
    except ValidationError as e:
        logger.debug("回复字段校验失败: %s", e.errors()[:3])
        return None


# ──────────────────────────────────────────
# 提示词退避
# ──────────────────────────────────────────


@dataclass(frozen=True)
class BackoffConfig:
    failure_threshold: int = 2
    base_seconds: float = 30.0
    max_seconds: float = 300.0


DEFAULT_BACKOFF_CONFIGS: dict[str, BackoffConfig] = {
    "topic_tone_change": BackoffConfig(failure_threshold=2, base_seconds=30.0, max_seconds=300.0),
}


@dataclass
class _BackoffState:
    failures: int = 0
    cooldown_until: float = 0.0


class PromptBackoff:
    """对反复失败的提示词进入冷却。

    连续失败次数达到阈值后，冷却时长 = min(base * 2^(failures - threshold), max)。
    成功一次即清零。未配置的提示词永不冷却。
    """

    def __init__(
        self,
        configs: dict[str, BackoffConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._configs = dict(DEFAULT_BACKOFF_CONFIGS if configs is None else configs)
        self._states: dict[str, _BackoffState] = {}
        self._clock = clock

    def is_cooling_down(self, prompt_name: str) -> bool:
        state = self._states.get(prompt_name)
        return state is not None and self._clock() < state.cooldown_until

    def remaining(self, prompt_name: str) -> float:
        state = self._states.get(prompt_name)
        if state is None:
            return 0.0
        return max(0.0, state.cooldown_until - self._clock())

    def record_success(self, prompt_name: str) -> None:
        self._states.pop(prompt_name, None)

    def record_failure(self, prompt_name: str) -> None:
        config = self._configs.get(prompt_name)
        if config is None:
            return
        state = self._states.setdefault(prompt_name, _BackoffState())
        state.failures += 1
        if state.failures >= config.failure_threshold:
            exponent = state.failures - config.failure_threshold
            cooldown = min(config.base_seconds * (2**exponent), config.max_seconds)
            state.cooldown_until = self._clock() + cooldown
            logger.warning("提示词 %s 连续失败 %d 次，冷却 %.0f 秒", prompt_name, state.failures, cooldown)


# ──────────────────────────────────────────
# 生成并解析
# ──────────────────────────────────────────


@dataclass
class ParseResult(Generic[T]):
    success: bool
    data: T | None = None
    raw_response: str = ""
    error: str | None = None
    attempts: int = 0
    errors: list[str] = field(default_factory=list)


async def generate_and_parse(
    generator: Generator,
    prompt: GeneratorPrompt,
    response_model: type[T],
    *,
    temperature: float,
    max_tokens: int,
    abort_signal=None,
    max_retries: int = 2,
    retry_temperature: float = 0.1,
    prompt_name: str = "",
    backoff: PromptBackoff | None = None,
    tracker: ExtractionTracker | None = None,
    tracker_name: str = "",
) -> ParseResult[T]:
    """调用生成器并解析结构化回复。

    - 首次使用给定温度，之后每次重试使用低温度；
    - 生成失败与解析失败都会重试，全部失败后返回 success=False，不抛异常；
    - 只有取消（GeneratorAbortError）会向上抛出。
    """
    errors: list[str] = []
    raw = ""
    for attempt in range(max_retries + 1):
        if attempt > 0 and tracker is not None:
            tracker.record_retry(tracker_name or prompt_name)
        settings = GenerationSettings(
            temperature=temperature if attempt == 0 else retry_temperature,
            max_tokens=max_tokens,
            abort_signal=abort_signal,
        )
        try:
            raw = await generator.generate(prompt, settings)
        except GeneratorAbortError:
            raise
        except GeneratorError as e:
            errors.append(str(e))
            logger.warning("%s 第 %d 次生成失败: %s", prompt_name, attempt + 1, e)
            continue

        parsed = parse_response(raw, response_model)
        if parsed is not None:
            if backoff is not None:
                backoff.record_success(prompt_name)
            return ParseResult(success=True, data=parsed, raw_response=raw, attempts=attempt + 1, errors=errors)
        errors.append("无法解析回复")
        logger.warning("%s 第 %d 次回复无法解析", prompt_name, attempt + 1)

    if backoff is not None:
        backoff.record_failure(prompt_name)
    return ParseResult(
        success=False,
        raw_response=raw,
        error=errors[-1] if errors else "未知错误",
        attempts=max_retries + 1,
        errors=errors,
    )
