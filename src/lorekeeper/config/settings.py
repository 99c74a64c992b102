"""全局配置。"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Category = Literal[
    "time",
    "location",
    "props",
    "climate",
    "characters",
    "relationships",
    "scene",
    "narrative",
    "chapters",
]

CHAPTER_DESCRIPTION_EXTRACTOR = "chapter_description"


class ModelConfig(BaseModel):
    """LLM 模型配置。"""

    provider: str = Field(
        default="google",
        description="模型提供商: 'google', 'openai', 'anthropic' 等",
    )
    model_name: str = Field(default="gemini-3-flash-preview", description="模型名称")
    temperature: float = Field(default=0.5, description="模型默认温度（每次调用会被覆盖）")
    max_tokens: int = Field(default=4096, description="最大 token 数")
    api_key: str = Field(
        default="",
        description="模型 API key（可选，优先使用环境变量）",
    )


class TrackSettings(BaseModel):
    """各类叙事维度的追踪开关。关闭后该类别的抽取器不会运行。"""

    time: bool = True
    location: bool = True
    props: bool = True
    climate: bool = True
    characters: bool = True
    relationships: bool = True
    scene: bool = True
    narrative: bool = True
    chapters: bool = True

    def is_enabled(self, category: str) -> bool:
        return bool(getattr(self, category, False))


def _default_temperatures() -> dict[str, float]:
    return {
        "time": 0.3,
        "location": 0.5,
        "props": 0.5,
        "climate": 0.3,
        "characters": 0.5,
        "relationships": 0.6,
        "scene": 0.6,
        "narrative": 0.7,
        "chapters": 0.5,
    }


class ExtractionSettings(BaseModel):
    """抽取引擎配置。"""

    # ── 模型配置 ──
    model: ModelConfig = Field(default_factory=ModelConfig, description="抽取使用的模型")

    # ── 追踪开关 ──
    track: TrackSettings = Field(default_factory=TrackSettings, description="各类别开关")

    # ── 采样参数 ──
    temperatures: dict[str, float] = Field(
        default_factory=_default_temperatures,
        description="按类别的采样温度",
    )
    prompt_temperatures: dict[str, float] = Field(
        default_factory=dict,
        description="按提示词名称覆盖的温度（优先级最高）",
    )
    max_tokens: int = Field(default=2048, description="单次抽取的最大输出 token")
    max_retries: int = Field(default=2, description="回复无法解析时的额外重试次数")
    retry_temperature: float = Field(default=0.1, description="重试时使用的低温度")

    # ── 消息窗口 ──
    max_messages_to_send: int | None = Field(
        default=10, description="常规抽取器最多发送的消息条数（None 为不限）"
    )
    max_chapter_messages_to_send: int | None = Field(
        default=24, description="章节描述抽取器最多发送的消息条数（None 为不限）"
    )

    # ── 提示词 ──
    custom_prompts: dict[str, str] = Field(
        default_factory=dict, description="按抽取器名称覆盖的系统提示词"
    )
    include_lore: bool = Field(default=True, description="是否把匹配的世界书条目放进提示词")

    # ── 并发与限流 ──
    max_requests_per_minute: int = Field(default=60, ge=1, description="每分钟最多请求数")
    max_concurrent_requests: int = Field(default=4, ge=1, description="同一阶段内最大并发请求数")

    def temperature_for(self, prompt_name: str, category: str, default: float) -> float:
        """温度优先级：提示词覆盖 → 类别 → 抽取器默认值。"""
        if prompt_name in self.prompt_temperatures:
            return self.prompt_temperatures[prompt_name]
        if category in self.temperatures:
            return self.temperatures[category]
        return default

    def max_messages_for(self, extractor_name: str) -> int | None:
        """章节描述需要整章上下文，使用单独的上限。"""
        if extractor_name == CHAPTER_DESCRIPTION_EXTRACTOR:
            return self.max_chapter_messages_to_send
        return self.max_messages_to_send


def load_settings(path: str | Path | None = None) -> ExtractionSettings:
    """从 YAML 加载配置，并应用环境变量覆盖。

    环境变量:
        LOREKEEPER_PROVIDER: 覆盖模型提供商。
        LOREKEEPER_MODEL: 覆盖模型名称。
    """
    data: dict = {}
    if path is not None:
        filepath = Path(path)
        if not filepath.exists():
            raise FileNotFoundError(f"配置文件不存在: {filepath}")
        data = yaml.safe_load(filepath.read_text(encoding="utf-8")) or {}
        logger.debug("已加载配置文件: %s", filepath)

    settings = ExtractionSettings.model_validate(data)

    provider = os.environ.get("LOREKEEPER_PROVIDER", "").strip()
    model_name = os.environ.get("LOREKEEPER_MODEL", "").strip()
    if provider:
        settings.model.provider = provider
    if model_name:
        settings.model.model_name = model_name
    return settings
