"""
app.db.document_store
~~~~~~~~~~~~~~~~~~~~~

文档存储 —— 对单个 MongoDB 集合的薄封装。

只提供按过滤条件的读、写、计数操作，不包含任何业务逻辑。
所有 ``PyMongoError`` 统一转换为 ``StoreOperationFailed``，
违反唯一索引时转换为 ``DuplicateKey`` 并带上冲突字段名。
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.errors import DuplicateKey, StoreOperationFailed
from app.core.logging import get_logger

logger = get_logger(__name__)

Filter = Mapping[str, Any]
Document = dict[str, Any]


def _duplicate_field(exc: DuplicateKeyError) -> str | None:
    """从 ``DuplicateKeyError`` 中解析出冲突字段名。"""
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    return next(iter(key_pattern), None)


class DocumentStore:
    """单集合文档存储。

    Attributes:
        name: 集合名称（用于日志）。
    """

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._collection = collection
        self.name: str = collection.name

    def _failed(self, op: str, exc: PyMongoError) -> StoreOperationFailed:
        logger.error("MongoDB 操作失败 | coll=%s | op=%s | error=%s", self.name, op, exc)
        return StoreOperationFailed(f"{self.name}.{op} 失败: {exc}")

    async def find_one(self, filter: Filter) -> Document | None:
        """返回第一条匹配的文档，没有匹配时返回 ``None``。"""
        try:
            return await self._collection.find_one(dict(filter))
        except PyMongoError as e:
            raise self._failed("find_one", e) from e

    async def find_many(self, filter: Filter) -> list[Document]:
        try:
            cursor = self._collection.find(dict(filter))
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            raise self._failed("find_many", e) from e

    async def count(self, filter: Filter) -> int:
        try:
            return await self._collection.count_documents(dict(filter))
        except PyMongoError as e:
            raise self._failed("count", e) from e

    async def insert_one(self, document: Document) -> None:
        try:
            await self._collection.insert_one(document)
        except DuplicateKeyError as e:
            field = _duplicate_field(e)
            logger.info("唯一索引冲突 | coll=%s | field=%s", self.name, field)
            raise DuplicateKey(field) from e
        except PyMongoError as e:
            raise self._failed("insert_one", e) from e

    async def insert_if_absent(self, document: Document) -> None:
        """按 ``_id`` 插入文档；已存在时不做任何修改。"""
        try:
            await self._collection.update_one(
                {"_id": document["_id"]},
                {"$setOnInsert": document},
                upsert=True,
            )
        except PyMongoError as e:
            raise self._failed("insert_if_absent", e) from e

    async def update_one(self, filter: Filter, fields: Mapping[str, Any]) -> int:
        """对第一条匹配文档执行 ``$set``。

        Returns:
            匹配到的文档数（0 或 1），用于判断条件写入是否生效。
        """
        try:
            result = await self._collection.update_one(dict(filter), {"$set": dict(fields)})
        except PyMongoError as e:
            raise self._failed("update_one", e) from e
        return result.matched_count

    async def update_many(self, filter: Filter, fields: Mapping[str, Any]) -> int:
        """对所有匹配文档执行 ``$set``，返回被修改的文档数。"""
        try:
            result = await self._collection.update_many(dict(filter), {"$set": dict(fields)})
        except PyMongoError as e:
            raise self._failed("update_many", e) from e
        return result.modified_count

    async def delete_by_id(self, id: str) -> int:
        try:
            result = await self._collection.delete_one({"_id": id})
        except PyMongoError as e:
            raise self._failed("delete_by_id", e) from e
        return result.deleted_count

    async def ensure_unique_index(self, field: str) -> None:
        """在指定字段上建立唯一索引（幂等）。"""
        try:
            await self._collection.create_index(field, unique=True, name=f"uniq_{field}")
        except PyMongoError as e:
            raise self._failed("create_index", e) from e
        logger.debug("唯一索引已就绪 | coll=%s | field=%s", self.name, field)
