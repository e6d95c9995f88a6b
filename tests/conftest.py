"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存文档存储替代 MongoDB，
使协调器与接口测试可在无数据库环境下快速运行。
"""
from __future__ import annotations

import copy
import os
from collections.abc import Iterable, Mapping
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from app.core.errors import DuplicateKey, StoreOperationFailed  # noqa: E402
from app.services.room_coordinator import RoomCoordinator  # noqa: E402


# ── 内存文档存储 ──────────────────────────────────────────────────────

def _matches(doc: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    """支持等值、``$in``、``$nin``、``$ne`` 四种条件。"""
    for key, cond in filter.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            for op, arg in cond.items():
                if op == "$in" and value not in arg:
                    return False
                if op == "$nin" and value in arg:
                    return False
                if op == "$ne" and value == arg:
                    return False
                if op not in ("$in", "$nin", "$ne"):
                    raise ValueError(f"不支持的查询操作符: {op}")
        elif value != cond:
            return False
    return True


class InMemoryDocumentStore:
    """与 ``DocumentStore`` 接口一致的内存实现。

    Attributes:
        docs: ``_id`` → 文档。
        unique_fields: 模拟唯一索引的字段。
        failing: 需要模拟失败的操作名（如 ``"update_one"``）。
    """

    def __init__(self, name: str, unique_fields: Iterable[str] = ()) -> None:
        self.name = name
        self.docs: dict[str, dict[str, Any]] = {}
        self.unique_fields: list[str] = list(unique_fields)
        self.failing: set[str] = set()

    def seed(self, *docs: dict[str, Any]) -> None:
        for doc in docs:
            self.docs[doc["_id"]] = copy.deepcopy(doc)

    def _check(self, op: str) -> None:
        if op in self.failing:
            raise StoreOperationFailed(f"{self.name}.{op} 失败: 模拟故障")

    async def find_one(self, filter: Mapping[str, Any]) -> dict[str, Any] | None:
        self._check("find_one")
        for doc in self.docs.values():
            if _matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    async def find_many(self, filter: Mapping[str, Any]) -> list[dict[str, Any]]:
        self._check("find_many")
        return [copy.deepcopy(doc) for doc in self.docs.values() if _matches(doc, filter)]

    async def count(self, filter: Mapping[str, Any]) -> int:
        self._check("count")
        return sum(1 for doc in self.docs.values() if _matches(doc, filter))

    async def insert_one(self, document: dict[str, Any]) -> None:
        self._check("insert_one")
        if document["_id"] in self.docs:
            raise DuplicateKey("_id")
        for field in self.unique_fields:
            if any(doc.get(field) == document.get(field) for doc in self.docs.values()):
                raise DuplicateKey(field)
        self.docs[document["_id"]] = copy.deepcopy(document)

    async def insert_if_absent(self, document: dict[str, Any]) -> None:
        self._check("insert_if_absent")
        self.docs.setdefault(document["_id"], copy.deepcopy(document))

    async def update_one(self, filter: Mapping[str, Any], fields: Mapping[str, Any]) -> int:
        self._check("update_one")
        for doc in self.docs.values():
            if _matches(doc, filter):
                doc.update(copy.deepcopy(dict(fields)))
                return 1
        return 0

    async def update_many(self, filter: Mapping[str, Any], fields: Mapping[str, Any]) -> int:
        self._check("update_many")
        matched = [doc for doc in self.docs.values() if _matches(doc, filter)]
        for doc in matched:
            doc.update(copy.deepcopy(dict(fields)))
        return len(matched)

    async def delete_by_id(self, id: str) -> int:
        self._check("delete_by_id")
        return 1 if self.docs.pop(id, None) is not None else 0

    async def ensure_unique_index(self, field: str) -> None:
        if field not in self.unique_fields:
            self.unique_fields.append(field)


# ── 文档构造 ──────────────────────────────────────────────────────────

def room_doc(
    id: str,
    name: str,
    creator: str,
    status: str = "single",
    pk_anchor: str = "",
) -> dict[str, Any]:
    return {
        "_id": id,
        "name": name,
        "creator": creator,
        "status": status,
        "rtcRoom": "",
        "playURL": "",
        "pkAnchor": pk_anchor,
    }


def user_doc(
    id: str,
    status: str = "idle",
    room: str = "",
    join_position: int | None = None,
) -> dict[str, Any]:
    return {"_id": id, "status": status, "room": room, "joinPosition": join_position}


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def rooms_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore("rooms")


@pytest.fixture()
def users_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore("active_users")


@pytest.fixture()
def coordinator(
    rooms_store: InMemoryDocumentStore, users_store: InMemoryDocumentStore,
) -> RoomCoordinator:
    """默认模式（先查后写）的协调器，最大直播间数量 20。"""
    return RoomCoordinator(rooms=rooms_store, users=users_store)
