"""事件存储的序列化格式。

{"version": 1, "initial_snapshot": {...} | null, "events": [扁平事件记录...]}
每条事件记录带 kind / subkind，反序列化时按二者还原具体变体。
"""

from __future__ import annotations

import json
from typing import Any

from lorekeeper.models.event import EVENT_LIST_ADAPTER
from lorekeeper.models.snapshot import Snapshot
from lorekeeper.state.event_store import EventStore

FORMAT_VERSION = 1


class SerializationError(ValueError):
    pass


def serialize_store(store: EventStore) -> dict[str, Any]:
    snapshot = store.initial_snapshot
    return {
        "version": FORMAT_VERSION,
        "initial_snapshot": snapshot.model_dump(mode="json") if snapshot is not None else None,
        "events": EVENT_LIST_ADAPTER.dump_python(store.events, mode="json"),
    }


def deserialize_store(data: dict[str, Any]) -> EventStore:
    version = data.get("version")
    if version != FORMAT_VERSION:
        raise SerializationError(f"不支持的存储格式版本: {version!r}")
    raw_snapshot = data.get("initial_snapshot")
    snapshot = Snapshot.model_validate(raw_snapshot) if raw_snapshot is not None else None
    events = EVENT_LIST_ADAPTER.validate_python(data.get("events") or [])
    return EventStore(initial_snapshot=snapshot, events=events)


def dumps_store(store: EventStore) -> str:
    return json.dumps(serialize_store(store), ensure_ascii=False, indent=2)


def loads_store(text: str) -> EventStore:
    return deserialize_store(json.loads(text))
