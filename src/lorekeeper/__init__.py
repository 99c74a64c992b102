"""Lorekeeper - 事件溯源的对话叙事状态抽取引擎。"""

__version__ = "0.1.0"
