"""
app.schemas.live_room
~~~~~~~~~~~~~~~~~~~~~

直播间与用户状态的 Pydantic 模型。

字段别名即 MongoDB 中的字段名（``rtcRoom``、``playURL`` 等），
主键 ``id`` 在存储时写为 ``_id``。
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class RoomStatus(str, Enum):
    """直播间状态。"""

    SINGLE = "single"  # 单人直播
    PK = "pk"  # PK 中


class UserStatus(str, Enum):
    """用户状态。"""

    IDLE = "idle"
    SINGLE_LIVE = "singleLive"  # 单人直播中
    PK_WAIT = "pkWait"  # 直播中，等待 PK 对方应答
    PK_LIVE = "pkLive"  # PK 直播中
    WATCHING = "watching"  # 观看直播中
    JOIN_WAIT = "joinWait"  # 已申请连麦，等待主播同意
    JOINED = "joined"  # 连麦中


class _Document(BaseModel):
    """存储文档基类，负责 ``id`` ↔ ``_id`` 的转换。"""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="唯一标识")

    @classmethod
    def from_document(cls, doc: dict[str, Any]):
        data = dict(doc)
        data["id"] = data.pop("_id")
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(by_alias=True, mode="json")
        doc["_id"] = doc.pop("id")
        return doc


class LiveRoom(_Document):
    """直播间。"""

    name: str = Field(..., min_length=1, description="直播间名称（全局唯一）")
    creator: str = Field(..., description="创建者用户 ID")
    status: RoomStatus = Field(default=RoomStatus.SINGLE, description="直播间状态")
    rtc_room: str = Field(default="", alias="rtcRoom", description="RTC 房间名")
    play_url: str = Field(default="", alias="playURL", description="播放地址")
    pk_anchor: str = Field(default="", alias="pkAnchor", description="PK 对手主播的用户 ID")


class ActiveUser(_Document):
    """用户状态记录，每个登录过的用户有且仅有一条。"""

    status: UserStatus = Field(default=UserStatus.IDLE, description="用户状态")
    room: str = Field(default="", description="当前所在直播间 ID，空闲时为空")
    join_position: int | None = Field(
        default=None, alias="joinPosition", description="连麦位置",
    )


class RoomPatch(BaseModel):
    """直播间的部分更新。

    未出现在请求中的字段不做修改。``name``、``status``、``rtcRoom``、
    ``playURL`` 为空值时同样视为不修改；``pkAnchor`` 只要出现（包括空值）
    就会覆盖，用于结束 PK 时清空对手。
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    status: RoomStatus | None = None
    rtc_room: str | None = Field(default=None, alias="rtcRoom")
    play_url: str | None = Field(default=None, alias="playURL")
    pk_anchor: str | None = Field(default=None, alias="pkAnchor")

    @property
    def pk_anchor_provided(self) -> bool:
        """``pkAnchor`` 是否被显式提供（此时无论取值都覆盖）。"""
        return "pk_anchor" in self.model_fields_set


class Reconciled(BaseModel, Generic[T]):
    """主操作结果 + 后续状态同步中出现的告警。

    主操作（如插入/删除直播间）成功后，用户状态同步失败不会使整个操作失败，
    而是记录在 ``warnings`` 中返回给调用方。
    """

    value: T
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """后续同步是否全部成功。"""
        return not self.warnings


# ── 接口请求/响应模型 ─────────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    """创建直播间请求体。"""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=64, description="直播间名称")
    rtc_room: str = Field(default="", alias="rtcRoom", description="RTC 房间名")
    play_url: str = Field(default="", alias="playURL", description="播放地址")


class AudienceData(BaseModel):
    """直播间观众列表（包括连麦中和申请连麦的观众）。"""

    room_id: str = Field(..., description="直播间 ID")
    total: int = Field(..., description="观众人数")
    audiences: list[ActiveUser] = Field(..., description="观众状态列表")
