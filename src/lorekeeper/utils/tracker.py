"""抽取遥测跟踪器。

按抽取器统计：
- 调用次数、重试次数
- 成功 / 失败 / 取消
- 产出事件数
- 跳过原因（disabled / not_triggered / cooldown / no_targets）

用于区分“某类别本轮没产出”和“某类别被关闭”。
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SKIP_DISABLED = "disabled"
SKIP_NOT_TRIGGERED = "not_triggered"
SKIP_COOLDOWN = "cooldown"
SKIP_NO_TARGETS = "no_targets"


@dataclass
class ExtractionRecord:
    """单次抽取器调用的结果。"""
    extractor: str
    message_id: int
    outcome: str
    events: int = 0
    target: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ExtractorStats:
    """单个抽取器的统计汇总。"""
    attempts: int = 0
    retries: int = 0
    failures: int = 0
    cancellations: int = 0
    events_produced: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)

    @property
    def successes(self) -> int:
        return max(0, self.attempts - self.failures - self.cancellations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "retries": self.retries,
            "successes": self.successes,
            "failures": self.failures,
            "cancellations": self.cancellations,
            "events_produced": self.events_produced,
            "skipped": dict(self.skipped),
        }


class ExtractionTracker:
    """抽取遥测（线程安全，作用域为一个编排器实例）。"""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[ExtractionRecord] = []
        self._stats: Dict[str, ExtractorStats] = {}

    def _get(self, extractor: str) -> ExtractorStats:
        if extractor not in self._stats:
            self._stats[extractor] = ExtractorStats()
        return self._stats[extractor]

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
            self._stats.clear()

    def record_attempt(self, extractor: str) -> None:
        with self._lock:
            self._get(extractor).attempts += 1

    def record_retry(self, extractor: str) -> None:
        with self._lock:
            self._get(extractor).retries += 1

    def record_completed(
        self, extractor: str, message_id: int, events: int, target: Optional[str] = None
    ) -> None:
        """抽取器正常结束（可能因回复无法解析而产出 0 条事件）。"""
        with self._lock:
            self._get(extractor).events_produced += events
            self._records.append(
                ExtractionRecord(extractor, message_id, "completed", events=events, target=target)
            )

    def record_failure(
        self, extractor: str, message_id: int, error: str, target: Optional[str] = None
    ) -> None:
        with self._lock:
            self._get(extractor).failures += 1
            self._records.append(
                ExtractionRecord(extractor, message_id, "failure", target=target, error=error)
            )

    def record_cancel(self, extractor: str, message_id: int, target: Optional[str] = None) -> None:
        with self._lock:
            self._get(extractor).cancellations += 1
            self._records.append(ExtractionRecord(extractor, message_id, "cancelled", target=target))

    def record_skip(self, extractor: str, message_id: int, reason: str) -> None:
        with self._lock:
            skipped = self._get(extractor).skipped
            skipped[reason] = skipped.get(reason, 0) + 1
            self._records.append(ExtractionRecord(extractor, message_id, f"skipped:{reason}"))

    def get_stats(self) -> Dict[str, ExtractorStats]:
        with self._lock:
            return dict(self._stats)

    def get_records(self) -> List[ExtractionRecord]:
        with self._lock:
            return list(self._records)

    def summary(self) -> Dict[str, Any]:
        """导出为可写入 metadata.json 的字典。"""
        with self._lock:
            return {name: stats.to_dict() for name, stats in sorted(self._stats.items())}
