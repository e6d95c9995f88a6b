"""
tests.test_live_room_schemas
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播间 / 用户状态模型与存储文档之间的转换。
"""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from conftest import room_doc, user_doc

from app.core.errors import RoomNameUsed
from app.schemas.api_response import ApiResponse
from app.schemas.live_room import ActiveUser, LiveRoom, RoomPatch, RoomStatus, UserStatus


class TestDocuments:

    def test_room_document_uses_storage_names(self) -> None:
        room = LiveRoom(id="r1", name="alice-room", creator="u1", rtc_room="rtc-1")

        assert room.to_document() == {
            "_id": "r1",
            "name": "alice-room",
            "creator": "u1",
            "status": "single",
            "rtcRoom": "rtc-1",
            "playURL": "",
            "pkAnchor": "",
        }

    def test_room_from_document(self) -> None:
        room = LiveRoom.from_document(room_doc("r1", "alice-room", "u1", "pk", "u2"))

        assert room.id == "r1"
        assert room.status is RoomStatus.PK
        assert room.pk_anchor == "u2"

    def test_user_from_document(self) -> None:
        user = ActiveUser.from_document(user_doc("v1", "joined", "r1", join_position=2))

        assert user.status is UserStatus.JOINED
        assert user.join_position == 2

    def test_new_user_is_idle(self) -> None:
        assert ActiveUser(id="u1").to_document() == user_doc("u1")

    def test_empty_room_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LiveRoom(id="r1", name="", creator="u1")

    def test_unknown_user_status_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ActiveUser.from_document(user_doc("u1", "sleeping"))


class TestRoomPatch:
    """区分"未提供"与"显式清空"。"""

    def test_omitted_pk_anchor(self) -> None:
        patch = RoomPatch.model_validate({"status": "single"})

        assert not patch.pk_anchor_provided

    def test_explicit_empty_pk_anchor(self) -> None:
        patch = RoomPatch.model_validate({"pkAnchor": ""})

        assert patch.pk_anchor_provided
        assert patch.pk_anchor == ""

    def test_explicit_null_pk_anchor(self) -> None:
        assert RoomPatch.model_validate({"pkAnchor": None}).pk_anchor_provided


def test_error_response_envelope() -> None:
    body = ApiResponse.from_error(RoomNameUsed()).model_dump()

    assert body == {"code": 40901, "data": {"error": "RoomNameUsed"}, "msg": "直播间名称已被占用"}
