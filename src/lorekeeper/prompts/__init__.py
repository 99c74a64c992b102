"""提示词管理模块：抽取器的系统提示词与代码分离。

每个抽取器对应本目录下一个同名 .txt 文件，通过 load_prompt() 读取；
用户提示词由各抽取器在代码中拼装。配置里的 custom_prompts 可整体替换系统提示词。
"""

from __future__ import annotations

import functools
from pathlib import Path

_PROMPTS_DIR = Path(__file__).parent
_SUFFIX = ".txt"


@functools.lru_cache(maxsize=64)
def load_prompt(name: str) -> str:
    """读取抽取器的系统提示词。

    Args:
        name: 抽取器的提示词名称，例如 ``props_change``。

    Raises:
        FileNotFoundError: 没有对应的 .txt 文件。
    """
    path = _PROMPTS_DIR / (name if name.endswith(_SUFFIX) else name + _SUFFIX)
    if not path.is_file():
        raise FileNotFoundError(f"找不到提示词 {name}: {path}")
    return path.read_text(encoding="utf-8").strip()


def available_prompts() -> list[str]:
    """本目录下所有提示词名称（按字母序）。"""
    return sorted(p.stem for p in _PROMPTS_DIR.glob(f"*{_SUFFIX}"))


__all__ = ["available_prompts", "load_prompt"]
