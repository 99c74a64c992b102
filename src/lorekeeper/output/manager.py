"""OutputManager：负责抽取产出物的写入与读取。

严格目录结构：
output/<chat_name>/
├── state/
│   ├── events.json            # 事件日志（含已撤销事件）
│   └── initial_snapshot.json  # 基线快照
├── projections/               # 逐条消息的投影快照
└── metadata.json              # 抽取元数据与遥测
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from lorekeeper.models.event import EVENT_LIST_ADAPTER
from lorekeeper.models.snapshot import Snapshot
from lorekeeper.output.serialization import FORMAT_VERSION, deserialize_store
from lorekeeper.state.event_store import EventStore

logger = logging.getLogger(__name__)


class OutputManager:
    """管理一段对话的全部抽取产出物。

    每处理完一轮就立即写盘，中断后可以从磁盘恢复事件存储继续抽取。
    """

    def __init__(self, output_dir: str | Path, chat_name: str = "untitled"):
        self.root = Path(output_dir)
        self.chat_name = chat_name

        # 子目录
        self.state_dir = self.root / "state"
        self.projections_dir = self.root / "projections"
        for d in [self.state_dir, self.projections_dir]:
            d.mkdir(parents=True, exist_ok=True)

        # 初始化元数据（已有则沿用）
        self._metadata: dict[str, Any] = self._load_metadata() or {
            "chat_name": chat_name,
            "created_at": datetime.now().isoformat(),
            "format_version": FORMAT_VERSION,
            "last_processed_message": None,
            "turns_processed": 0,
            "extraction_log": [],
            "telemetry": {},
        }
        self._save_metadata()

    # ────────────────────────────────────────────
    # 事件存储
    # ────────────────────────────────────────────

    @property
    def events_path(self) -> Path:
        return self.state_dir / "events.json"

    @property
    def snapshot_path(self) -> Path:
        return self.state_dir / "initial_snapshot.json"

    def save_store(self, store: EventStore) -> None:
        """写入事件日志与基线快照。"""
        if store.initial_snapshot is not None:
            self._write_json(self.snapshot_path, store.initial_snapshot.model_dump(mode="json"))
        self._write_json(
            self.events_path,
            {
                "version": FORMAT_VERSION,
                "events": EVENT_LIST_ADAPTER.dump_python(store.events, mode="json"),
            },
        )
        logger.debug("事件日志已写入磁盘: %d 条", len(store.events))

    def has_store(self) -> bool:
        return self.snapshot_path.exists() or self.events_path.exists()

    def load_store(self) -> EventStore:
        """从磁盘恢复事件存储；目录为空时返回空存储。"""
        snapshot = None
        if self.snapshot_path.exists():
            snapshot = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        events: list[Any] = []
        if self.events_path.exists():
            data = json.loads(self.events_path.read_text(encoding="utf-8"))
            events = data.get("events", [])
        store = deserialize_store(
            {"version": FORMAT_VERSION, "initial_snapshot": snapshot, "events": events}
        )
        logger.info("从 %s 恢复 %d 条事件", self.root, len(store.events))
        return store

    # ────────────────────────────────────────────
    # 投影
    # ────────────────────────────────────────────

    def save_projection(self, snapshot: Snapshot) -> Path:
        """保存某条消息处的投影快照。"""
        filepath = self.projections_dir / f"message_{snapshot.source.message_id:04d}.json"
        self._write_json(filepath, snapshot.model_dump(mode="json"))
        return filepath

    def load_projection(self, message_id: int) -> Snapshot | None:
        filepath = self.projections_dir / f"message_{message_id:04d}.json"
        if not filepath.exists():
            return None
        return Snapshot.model_validate_json(filepath.read_text(encoding="utf-8"))

    # ────────────────────────────────────────────
    # 元数据
    # ────────────────────────────────────────────

    @property
    def last_processed_message(self) -> int | None:
        return self._metadata.get("last_processed_message")

    def record_turn(
        self,
        message_id: int,
        swipe_id: int,
        event_count: int,
        failures: int = 0,
        aborted: bool = False,
    ) -> None:
        """记录一轮抽取；取消的轮次不推进处理进度。"""
        if not aborted:
            previous = self._metadata.get("last_processed_message")
            self._metadata["last_processed_message"] = (
                message_id if previous is None else max(previous, message_id)
            )
            self._metadata["turns_processed"] += 1
        self._metadata["extraction_log"].append({
            "message_id": message_id,
            "swipe_id": swipe_id,
            "events": event_count,
            "failures": failures,
            "aborted": aborted,
            "timestamp": datetime.now().isoformat(),
        })
        self._save_metadata()

    def save_telemetry(self, summary: dict[str, Any]) -> None:
        self._metadata["telemetry"] = summary
        self._save_metadata()

    def get_metadata(self) -> dict[str, Any]:
        return dict(self._metadata)

    # ────────────────────────────────────────────
    # 内部工具
    # ────────────────────────────────────────────

    def _write_json(self, filepath: Path, data: Any) -> None:
        """写入 JSON 文件。"""
        filepath.write_text(
            json.dumps(data, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )

    def _load_metadata(self) -> dict[str, Any] | None:
        path = self.root / "metadata.json"
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _save_metadata(self) -> None:
        """更新 metadata.json。"""
        self._metadata["updated_at"] = datetime.now().isoformat()
        self._write_json(self.root / "metadata.json", self._metadata)
