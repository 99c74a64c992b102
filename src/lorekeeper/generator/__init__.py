"""生成器协作者：LLM 调用边界与限流。"""

from lorekeeper.generator.base import (
    GenerationSettings,
    Generator,
    GeneratorAbortError,
    GeneratorError,
    GeneratorPrompt,
    PromptMessage,
)
from lorekeeper.generator.chat_model import LangChainGenerator, extract_text
from lorekeeper.generator.rate_limiter import RateLimiter

__all__ = [
    "GenerationSettings",
    "Generator",
    "GeneratorAbortError",
    "GeneratorError",
    "GeneratorPrompt",
    "LangChainGenerator",
    "PromptMessage",
    "RateLimiter",
    "extract_text",
]
