"""快照模型：某一时刻的聚合叙事状态。

快照只在初始化时由首轮抽取写入一次，之后的所有变化都来自事件回放。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

TensionLevel = Literal[
    "relaxed", "aware", "guarded", "tense", "charged", "volatile", "explosive"
]
TensionType = Literal[
    "confrontation",
    "intimate",
    "vulnerable",
    "celebratory",
    "negotiation",
    "suspense",
    "conversation",
]
TensionDirection = Literal["escalating", "stable", "decreasing"]
RelationshipStatus = Literal[
    "strangers",
    "acquaintances",
    "friendly",
    "close",
    "intimate",
    "strained",
    "hostile",
    "complicated",
]
ChapterEndReason = Literal["location_change", "time_jump", "both", "manual"]
Daylight = Literal["dawn", "day", "dusk", "night"]
OutfitSlot = Literal[
    "head", "neck", "jacket", "back", "torso", "legs", "footwear", "socks", "underwear"
]

TENSION_LEVELS: tuple[str, ...] = TensionLevel.__args__
OUTFIT_SLOTS: tuple[str, ...] = OutfitSlot.__args__


class Source(BaseModel):
    """事实来源：对话中的第几条消息、该消息的第几个候选回复（swipe）。"""

    message_id: int = Field(ge=0, description="消息序号")
    swipe_id: int = Field(default=0, ge=0, description="候选回复序号")


def sort_pair(a: str, b: str) -> tuple[str, str]:
    """按小写名字排序角色对，保留原始大小写。"""
    return (a, b) if a.lower() <= b.lower() else (b, a)


def pair_key(a: str, b: str) -> str:
    """与顺序、大小写无关的关系键。"""
    first, second = sorted((a.lower(), b.lower()))
    return f"{first}|{second}"


# ── 地点与天气 ──


class LocationState(BaseModel):
    area: str = Field(default="", description="大区域")
    place: str = Field(default="", description="具体场所")
    position: str = Field(default="", description="场所内位置")
    props: list[str] = Field(default_factory=list, description="场景中的道具（保持插入顺序）")
    location_type: str = Field(default="outdoor", description="场所类型")


class Climate(BaseModel):
    """天气与室内外环境。温度单位为摄氏度。"""

    temperature: float | None = Field(default=None, description="体感所处环境温度")
    outdoor_temperature: float | None = None
    feels_like: float | None = None
    humidity: float | None = Field(default=None, description="相对湿度 0-100")
    precipitation: float | None = Field(default=None, description="降水量 mm")
    cloud_cover: float | None = Field(default=None, description="云量 0-100")
    wind_speed: float | None = Field(default=None, description="风速 km/h")
    wind_direction: str | None = None
    conditions: str = Field(default="", description="天气描述")
    condition_type: str | None = Field(default=None, description="天气类别，如 clear/rain/snow")
    uv_index: float | None = None
    daylight: Daylight | None = None
    is_indoors: bool = False
    building_type: str | None = None


class DailyForecast(BaseModel):
    date: str = Field(description="日期 YYYY-MM-DD")
    high: float | None = None
    low: float | None = None
    conditions: str = ""
    precipitation_chance: float | None = Field(default=None, description="降水概率 0-100")


# ── 场景 ──


class Tension(BaseModel):
    level: TensionLevel = "relaxed"
    type: TensionType = "conversation"
    direction: TensionDirection = "stable"


class SceneState(BaseModel):
    topic: str = ""
    tone: str = ""
    tension: Tension = Field(default_factory=Tension)


# ── 角色 ──


class CharacterProfile(BaseModel):
    """角色的静态档案（初始抽取得到，不由事件修改）。"""

    sex: str = ""
    species: str = ""
    age: str = ""
    appearance: list[str] = Field(default_factory=list)
    personality: list[str] = Field(default_factory=list)


def _empty_outfit() -> dict[str, str | None]:
    return {slot: None for slot in OUTFIT_SLOTS}


class CharacterState(BaseModel):
    name: str = Field(description="规范名")
    position: str = ""
    activity: str | None = None
    mood: list[str] = Field(default_factory=list, description="情绪（有序、大小写不敏感去重）")
    physical_state: list[str] = Field(default_factory=list, description="身体状态")
    outfit: dict[str, str | None] = Field(default_factory=_empty_outfit, description="按部位的穿着")
    akas: list[str] = Field(default_factory=list, description="别名")
    profile: CharacterProfile | None = None


# ── 关系 ──


class RelationshipAttitude(BaseModel):
    """一方对另一方的态度。"""

    feelings: list[str] = Field(default_factory=list)
    secrets: list[str] = Field(default_factory=list)
    wants: list[str] = Field(default_factory=list)


class RelationshipState(BaseModel):
    pair: tuple[str, str] = Field(description="按名字排序后的角色对")
    status: RelationshipStatus = "strangers"
    a_to_b: RelationshipAttitude = Field(
        default_factory=RelationshipAttitude, description="pair[0] 对 pair[1] 的态度"
    )
    b_to_a: RelationshipAttitude = Field(
        default_factory=RelationshipAttitude, description="pair[1] 对 pair[0] 的态度"
    )
    subjects: list[str] = Field(default_factory=list, description="历次互动主题")


# ── 叙事与章节 ──


class NarrativeEventRecord(BaseModel):
    description: str
    witnesses: list[str] = Field(default_factory=list)
    location: str = ""
    message_id: int = 0
    chapter_index: int = 0


class ChapterRecord(BaseModel):
    index: int
    title: str = ""
    summary: str = ""
    ended_at_message: int | None = None
    end_reason: ChapterEndReason | None = None


# ── 快照 ──


class Snapshot(BaseModel):
    """叙事状态的聚合视图。"""

    source: Source = Field(description="该快照对应的消息位置")
    time: datetime | None = Field(default=None, description="故事内时间")
    location: LocationState | None = None
    forecasts: dict[str, list[DailyForecast]] = Field(default_factory=dict, description="按区域的天气预报")
    climate: Climate | None = None
    scene: SceneState | None = None
    characters: dict[str, CharacterState] = Field(default_factory=dict)
    relationships: dict[str, RelationshipState] = Field(default_factory=dict, description="键为 pair_key")
    current_chapter: int = 0
    characters_present: list[str] = Field(default_factory=list)
    narrative_events: list[NarrativeEventRecord] = Field(default_factory=list)
    chapters: list[ChapterRecord] = Field(default_factory=list)

    def find_character(self, name: str) -> CharacterState | None:
        """大小写不敏感地查找角色。"""
        state = self.characters.get(name)
        if state is not None:
            return state
        lowered = name.lower()
        for key, value in self.characters.items():
            if key.lower() == lowered:
                return value
        return None

    def get_relationship(self, a: str, b: str) -> RelationshipState | None:
        return self.relationships.get(pair_key(a, b))

