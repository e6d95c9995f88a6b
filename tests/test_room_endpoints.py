"""
tests.test_room_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~

直播间 REST 接口测试。

不进入 ``TestClient`` 上下文，因此不会触发 lifespan 连接 MongoDB；
协调器通过 ``dependency_overrides`` 注入内存存储版本。
"""
from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from conftest import room_doc, user_doc

from app.api.deps import get_coordinator
from app.core.rate_limit import limiter
from app.main import app
from app.services.room_coordinator import RoomCoordinator


@pytest.fixture()
def client(coordinator: RoomCoordinator) -> Iterator[TestClient]:
    limiter.reset()
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


class TestIdentity:

    def test_missing_user_header(self, client: TestClient) -> None:
        """缺少身份请求头时同样返回统一应答体。"""
        resp = client.get("/api/rooms")

        assert resp.status_code == 401
        body = resp.json()
        assert body["code"] == 401
        assert body["data"] is None
        assert "X-User-Id" in body["msg"]

    def test_first_request_creates_idle_user(self, client: TestClient, users_store) -> None:
        resp = client.get("/api/users/me", headers=as_user("u1"))

        assert resp.status_code == 200
        assert resp.json()["data"] == {"id": "u1", "status": "idle", "room": "", "joinPosition": None}
        assert "u1" in users_store.docs


class TestRoomLifecycle:

    def test_create_room(self, client: TestClient, rooms_store, users_store) -> None:
        resp = client.post(
            "/api/rooms",
            json={"name": "alice-room", "rtcRoom": "rtc-1", "playURL": "rtmp://a"},
            headers=as_user("u1"),
        )

        body = resp.json()
        assert resp.status_code == 200
        assert body["code"] == 200
        room = body["data"]["value"]
        assert room["creator"] == "u1"
        assert room["rtcRoom"] == "rtc-1"
        assert body["data"]["warnings"] == []
        assert room["id"] in rooms_store.docs
        assert users_store.docs["u1"]["status"] == "singleLive"

    def test_name_collision_envelope(self, client: TestClient, rooms_store) -> None:
        """业务错误以统一应答体返回，``data.error`` 为错误类型名。"""
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))

        resp = client.post("/api/rooms", json={"name": "alice-room"}, headers=as_user("u2"))

        assert resp.status_code == 409
        assert resp.json()["code"] == 40901
        assert resp.json()["data"] == {"error": "RoomNameUsed"}

    def test_empty_name_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={"name": ""}, headers=as_user("u1"))

        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == 422
        assert body["data"][0]["loc"] == ["body", "name"]

    def test_close_room(self, client: TestClient, rooms_store, users_store) -> None:
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))
        users_store.seed(user_doc("u1", "singleLive", "r1"), user_doc("v1", "watching", "r1"))

        resp = client.delete("/api/rooms/r1", headers=as_user("u1"))

        assert resp.status_code == 200
        assert resp.json()["data"]["value"]["id"] == "r1"
        assert rooms_store.docs == {}
        assert users_store.docs["v1"]["status"] == "idle"

    def test_close_room_of_other_user(self, client: TestClient, rooms_store) -> None:
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))

        resp = client.delete("/api/rooms/r1", headers=as_user("u2"))

        assert resp.status_code == 404
        assert resp.json()["data"] == {"error": "RoomNotFound"}

    def test_patch_room(self, client: TestClient, rooms_store) -> None:
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))

        resp = client.patch(
            "/api/rooms/r1", json={"status": "pk", "pkAnchor": "u2"}, headers=as_user("u1"),
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["pkAnchor"] == "u2"
        assert rooms_store.docs["r1"]["status"] == "pk"

    def test_patch_pk_without_anchor(self, client: TestClient, rooms_store) -> None:
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))

        resp = client.patch("/api/rooms/r1", json={"status": "pk"}, headers=as_user("u1"))

        assert resp.status_code == 400
        assert resp.json()["code"] == 40001

    def test_only_creator_can_patch(self, client: TestClient, rooms_store) -> None:
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))

        resp = client.patch("/api/rooms/r1", json={"name": "mine"}, headers=as_user("u2"))

        assert resp.status_code == 404
        assert rooms_store.docs["r1"]["name"] == "alice-room"


class TestQueries:

    @pytest.fixture()
    def rooms(self, rooms_store) -> None:
        rooms_store.seed(
            room_doc("r1", "alice-room", "u1"),
            room_doc("r2", "bob-room", "u2", status="pk", pk_anchor="u1"),
        )

    def test_list_rooms(self, client: TestClient, rooms) -> None:
        resp = client.get("/api/rooms", headers=as_user("v1"))

        assert {room["id"] for room in resp.json()["data"]} == {"r1", "r2"}

    def test_list_rooms_by_status(self, client: TestClient, rooms) -> None:
        resp = client.get("/api/rooms", params={"status": "pk"}, headers=as_user("v1"))

        assert [room["id"] for room in resp.json()["data"]] == ["r2"]

    def test_list_pk_rooms_excludes_own(self, client: TestClient, rooms) -> None:
        resp = client.get("/api/rooms/pk", headers=as_user("u1"))

        assert resp.json()["data"] == []

    def test_get_missing_room(self, client: TestClient) -> None:
        resp = client.get("/api/rooms/nope", headers=as_user("v1"))

        assert resp.status_code == 404


class TestAudience:

    def test_enter_list_leave(self, client: TestClient, rooms_store, users_store) -> None:
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))

        entered = client.post("/api/rooms/r1/enter", headers=as_user("v1"))
        audiences = client.get("/api/rooms/r1/audiences", headers=as_user("v1"))
        left = client.post("/api/rooms/r1/leave", headers=as_user("v1"))

        assert entered.json()["data"]["id"] == "r1"
        data = audiences.json()["data"]
        assert data["total"] == 1
        assert data["audiences"][0]["id"] == "v1"
        assert left.status_code == 200
        assert left.json()["data"] is None
        assert users_store.docs["v1"]["status"] == "idle"

    def test_broadcaster_cannot_enter(self, client: TestClient, rooms_store, users_store) -> None:
        rooms_store.seed(room_doc("r1", "alice-room", "u1"), room_doc("r2", "bob-room", "u2"))
        users_store.seed(user_doc("u1", "singleLive", "r1"))

        resp = client.post("/api/rooms/r2/enter", headers=as_user("u1"))

        assert resp.status_code == 409
        assert resp.json()["data"] == {"error": "UserBroadcasting"}

    def test_audience_total_matches_list(
        self, client: TestClient, rooms_store, users_store,
    ) -> None:
        """``total`` 取自同一次查询的观众列表。"""
        rooms_store.seed(room_doc("r1", "alice-room", "u1"))
        users_store.seed(
            user_doc("u1", "singleLive", "r1"),
            user_doc("v1", "watching", "r1"),
            user_doc("v2", "joined", "r1", join_position=1),
        )

        data = client.get("/api/rooms/r1/audiences", headers=as_user("v3")).json()["data"]

        assert data["total"] == len(data["audiences"]) == 2


def test_rate_limit_per_user(client: TestClient) -> None:
    """同一用户短时间内请求过多时返回 429，不影响其他用户。"""
    statuses = [client.get("/api/users/me", headers=as_user("u1")).status_code for _ in range(25)]

    assert 429 in statuses
    assert client.get("/api/users/me", headers=as_user("u2")).status_code == 200
