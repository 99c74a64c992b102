"""通用工具。"""

from lorekeeper.utils.tracker import ExtractionTracker, ExtractorStats

__all__ = ["ExtractionTracker", "ExtractorStats"]
