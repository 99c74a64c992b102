"""对话上下文：宿主聊天应用提供的原始记录与角色信息。"""

from __future__ import annotations

import logging
from typing import Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    """一条对话消息。"""

    mes: str = Field(default="", description="消息正文")
    is_user: bool = Field(default=False, description="是否为用户发送")
    is_system: bool = Field(default=False, description="是否为系统消息（不参与抽取）")
    name: str | None = Field(default=None, description="发送者名称")
    swipe_id: int = Field(default=0, ge=0, description="当前选中的候选回复")


class ChatCharacter(BaseModel):
    name: str
    description: str = ""
    personality: str = ""


class ChatContext(BaseModel):
    """抽取所需的对话上下文。

    ``swipe_resolver`` 允许宿主自定义“规范 swipe”解析；未提供时使用
    各消息自身的 ``swipe_id``，越界则为 0。
    """

    chat: list[ChatMessage] = Field(default_factory=list)
    characters: list[ChatCharacter] = Field(default_factory=list)
    character_id: int | None = Field(default=None, description="当前角色卡序号")
    name1: str = Field(default="User", description="用户名")
    name2: str = Field(default="Character", description="角色名")
    persona: str | None = Field(default=None, description="用户人设描述")

    swipe_resolver: Callable[[int], int] | None = Field(default=None, exclude=True, repr=False)

    def get_canonical_swipe_id(self, message_id: int) -> int:
        if self.swipe_resolver is not None:
            return self.swipe_resolver(message_id)
        if 0 <= message_id < len(self.chat):
            return self.chat[message_id].swipe_id
        return 0

    def speaker(self, message: ChatMessage) -> str:
        if message.name:
            return message.name
        return self.name1 if message.is_user else self.name2

    @property
    def active_character(self) -> ChatCharacter | None:
        if self.character_id is None or not 0 <= self.character_id < len(self.characters):
            return None
        return self.characters[self.character_id]
