"""世界书（lore / world-info）条目模型。"""

from __future__ import annotations

from pydantic import BaseModel, Field


class LoreEntry(BaseModel):
    key: list[str] = Field(default_factory=list, description="主关键词")
    key_secondary: list[str] = Field(default_factory=list, description="次关键词")
    content: str = Field(default="", description="条目正文")
    comment: str = Field(default="", description="条目标题/备注")
    order: int = Field(default=100, description="插入优先级，越大越靠前")
