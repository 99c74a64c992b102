"""配置模块。"""

from lorekeeper.config.settings import (
    Category,
    ExtractionSettings,
    ModelConfig,
    TrackSettings,
    load_settings,
)

__all__ = [
    "Category",
    "ExtractionSettings",
    "ModelConfig",
    "TrackSettings",
    "load_settings",
]
