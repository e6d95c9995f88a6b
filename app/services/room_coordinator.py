"""
app.services.room_coordinator
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播间协调器 —— 直播间的创建、关闭、更新、查询，以及用户进入/离开直播间。

每个操作都是对 ``rooms`` / ``active_users`` 两个集合的一组"先读后写"：
先读取并校验约束（名称唯一、每人一个直播间、用户状态互斥），再写入。
进程内不加锁，也不缓存任何数据。

默认模式下，并发创建同名直播间或同一用户并发创建直播间时，可能都通过校验。
开启 ``strict_uniqueness`` 后，由 ``name`` / ``creator`` 上的唯一索引兜底，
并把创建者状态的写入改为条件写入。

主操作成功后的状态同步（创建者状态、观众状态）失败时只记录日志，
并通过 ``Reconciled.warnings`` 返回，不回滚主操作。
"""
from __future__ import annotations

from typing import Any

from app.core.config import DEFAULT_ROOM_NUMBER_LIMIT
from app.core.errors import (
    CanOnlyCreateOneRoom,
    DuplicateKey,
    PKAnchorRequired,
    RoomNameUsed,
    RoomNotFound,
    ServerError,
    StoreOperationFailed,
    TooManyRooms,
    UserNotFound,
)
from app.core.logging import get_logger
from app.db.document_store import DocumentStore
from app.schemas.live_room import (
    ActiveUser,
    LiveRoom,
    Reconciled,
    RoomPatch,
    RoomStatus,
    UserStatus,
)
from app.services.presence import (
    AUDIENCE_STATUSES,
    PresenceAction,
    affected_statuses,
    transition,
)

logger = get_logger(__name__)


def _status_values(statuses: frozenset[UserStatus]) -> list[str]:
    return sorted(status.value for status in statuses)


class RoomCoordinator:
    """直播间与用户状态协调器。

    Attributes:
        rooms: 直播间集合。
        users: 用户状态集合。
        room_number_limit: 最大直播间数量，达到后无法创建新的直播间。
        strict_uniqueness: 是否依赖唯一索引和条件写入消除并发创建竞争。
    """

    def __init__(
        self,
        rooms: DocumentStore,
        users: DocumentStore,
        room_number_limit: int = DEFAULT_ROOM_NUMBER_LIMIT,
        strict_uniqueness: bool = False,
    ) -> None:
        self.rooms = rooms
        self.users = users
        self.room_number_limit = room_number_limit
        self.strict_uniqueness = strict_uniqueness

    async def ensure_indexes(self) -> None:
        """严格模式下在 ``name`` 和 ``creator`` 上建立唯一索引。"""
        if not self.strict_uniqueness:
            return
        await self.rooms.ensure_unique_index("name")
        await self.rooms.ensure_unique_index("creator")
        logger.info("直播间唯一索引已就绪 | fields=name,creator")

    # ── 用户 ──────────────────────────────────────────────────────────

    async def get_active_user(self, user_id: str) -> ActiveUser:
        doc = await self.users.find_one({"_id": user_id})
        if doc is None:
            logger.info("用户状态记录不存在 | user=%s", user_id)
            raise UserNotFound(f"用户 {user_id} 不存在")
        return ActiveUser.from_document(doc)

    async def ensure_active_user(self, user_id: str) -> ActiveUser:
        """确保用户有一条状态记录（首次出现时为空闲状态），并返回当前记录。"""
        await self.users.insert_if_absent(ActiveUser(id=user_id).to_document())
        return await self.get_active_user(user_id)

    # ── 直播间创建 ────────────────────────────────────────────────────

    async def create_room(self, room: LiveRoom) -> Reconciled[LiveRoom]:
        """创建直播间。

        依次校验：直播间总数未达上限 → 名称未被他人占用 → 创建者没有其他直播间
        → 创建者不在观看或连麦中。同一用户以相同名称重复创建时，直接返回已有直播间。

        Raises:
            TooManyRooms: 直播间数量已达上限。
            RoomNameUsed: 名称已被其他用户的直播间占用。
            CanOnlyCreateOneRoom: 创建者已经有一个直播间。
            UserNotFound: 创建者没有状态记录。
            UserWatching: 创建者正在观看直播。
            UserJoined: 创建者正在连麦或等待连麦。
        """
        total = await self.rooms.count({})
        if total >= self.room_number_limit:
            logger.warning(
                "直播间数量已达上限 | current=%d | max=%d", total, self.room_number_limit,
            )
            raise TooManyRooms()

        existing = await self._find_room_by_name(room.name, room.creator)
        if existing is not None:
            return Reconciled(value=existing)

        creator_id = room.creator
        if await self.rooms.count({"creator": creator_id}) > 0:
            logger.info("用户已创建过直播间，无法再次创建 | user=%s", creator_id)
            raise CanOnlyCreateOneRoom()

        creator = await self.get_active_user(creator_id)
        target = transition(creator.status, PresenceAction.CREATE_ROOM).target

        try:
            await self.rooms.insert_one(room.to_document())
        except DuplicateKey as e:
            return Reconciled(value=await self._resolve_duplicate(room, e))

        warnings: list[str] = []
        if self.strict_uniqueness:
            await self._claim_creator(room, target, warnings)
        else:
            try:
                await self.users.update_one(
                    {"_id": creator_id}, {"status": target.value, "room": room.id},
                )
            except StoreOperationFailed as e:
                logger.error("更新直播间创建者状态失败 | user=%s | room=%s", creator_id, room.id)
                warnings.append(f"更新创建者 {creator_id} 状态失败: {e.msg}")

        logger.info("用户创建了直播间 | user=%s | room=%s", creator_id, room.id)
        return Reconciled(value=room, warnings=warnings)

    async def _find_room_by_name(self, name: str, creator_id: str) -> LiveRoom | None:
        """查找同名直播间：他人占用时报错，本人创建时返回已有直播间。"""
        doc = await self.rooms.find_one({"name": name})
        if doc is None:
            return None
        existing = LiveRoom.from_document(doc)
        if existing.creator != creator_id:
            logger.info("直播间名称已被占用 | name=%s", name)
            raise RoomNameUsed()
        logger.info(
            "用户已创建过该直播间，返回已有直播间 | user=%s | room=%s",
            existing.creator, existing.id,
        )
        return existing

    async def _resolve_duplicate(self, room: LiveRoom, exc: DuplicateKey) -> LiveRoom:
        """把插入时的唯一索引冲突映射为与校验阶段相同的结果。"""
        if exc.field == "name":
            existing = await self._find_room_by_name(room.name, room.creator)
            if existing is not None:
                return existing
        elif exc.field == "creator":
            # 同一用户并发以相同名称创建时，可能先触发 creator 索引
            doc = await self.rooms.find_one({"name": room.name, "creator": room.creator})
            if doc is not None:
                return LiveRoom.from_document(doc)
            logger.info("并发创建被唯一索引拦截 | user=%s", room.creator)
            raise CanOnlyCreateOneRoom() from exc
        raise StoreOperationFailed(f"插入直播间 {room.id} 失败: {exc.msg}") from exc

    async def _claim_creator(
        self, room: LiveRoom, target: UserStatus, warnings: list[str],
    ) -> None:
        """严格模式：仅当创建者仍不是观众时才写入直播状态，否则撤销刚创建的直播间。"""
        creator_id = room.creator
        try:
            matched = await self.users.update_one(
                {"_id": creator_id, "status": {"$nin": _status_values(AUDIENCE_STATUSES)}},
                {"status": target.value, "room": room.id},
            )
        except StoreOperationFailed as e:
            logger.error("更新直播间创建者状态失败 | user=%s | room=%s", creator_id, room.id)
            warnings.append(f"更新创建者 {creator_id} 状态失败: {e.msg}")
            return
        if matched:
            return

        logger.info("创建者在创建过程中成为观众，撤销直播间 | user=%s | room=%s", creator_id, room.id)
        try:
            await self.rooms.delete_by_id(room.id)
        except StoreOperationFailed:
            logger.error("撤销直播间失败，直播间残留 | user=%s | room=%s", creator_id, room.id)
            raise
        creator = await self.get_active_user(creator_id)
        transition(creator.status, PresenceAction.CREATE_ROOM)
        raise StoreOperationFailed(f"更新创建者 {creator_id} 状态未生效")

    # ── 直播间关闭 ────────────────────────────────────────────────────

    async def close_room(self, user_id: str, room_id: str) -> Reconciled[LiveRoom]:
        """关闭直播间，只有创建者可以关闭。

        删除直播间后，创建者和所有观众（观看、连麦、等待连麦）都回到空闲状态。

        Returns:
            被关闭的直播间，以及状态同步失败的告警。

        Raises:
            RoomNotFound: 直播间不存在或不是该用户创建的。
        """
        doc = await self.rooms.find_one({"_id": room_id, "creator": user_id})
        if doc is None:
            logger.info("找不到该用户创建的直播间 | user=%s | room=%s", user_id, room_id)
            raise RoomNotFound()
        room = LiveRoom.from_document(doc)

        await self.rooms.delete_by_id(room_id)

        warnings: list[str] = []
        try:
            await self.users.update_one(
                {"_id": user_id}, {"status": UserStatus.IDLE.value, "room": ""},
            )
        except StoreOperationFailed as e:
            logger.error("更新直播间创建者状态失败 | user=%s | room=%s", user_id, room_id)
            warnings.append(f"更新创建者 {user_id} 状态失败: {e.msg}")

        try:
            dismissed = await self.users.update_many(
                {
                    "room": room_id,
                    "status": {"$in": _status_values(affected_statuses(PresenceAction.DISMISS))},
                },
                {"status": UserStatus.IDLE.value, "room": "", "joinPosition": None},
            )
            logger.debug("观众已离开直播间 | room=%s | count=%d", room_id, dismissed)
        except StoreOperationFailed as e:
            logger.error("更新直播间观众状态失败 | room=%s", room_id)
            warnings.append(f"更新直播间 {room_id} 观众状态失败: {e.msg}")

        logger.info("用户关闭了直播间 | user=%s | room=%s", user_id, room_id)
        return Reconciled(value=room, warnings=warnings)

    # ── 直播间查询 ────────────────────────────────────────────────────

    async def get_room_by_fields(self, fields: dict[str, Any]) -> LiveRoom:
        """根据一组字段条件查找直播间。

        Raises:
            RoomNotFound: 没有匹配的直播间。
        """
        doc = await self.rooms.find_one(fields)
        if doc is None:
            logger.info("没有匹配的直播间 | fields=%s", fields)
            raise RoomNotFound()
        return LiveRoom.from_document(doc)

    async def get_room_by_id(self, room_id: str) -> LiveRoom:
        return await self.get_room_by_fields({"_id": room_id})

    async def list_all_rooms(self) -> list[LiveRoom]:
        return await self.list_rooms_by_fields()

    async def list_rooms_by_fields(self, fields: dict[str, Any] | None = None) -> list[LiveRoom]:
        docs = await self.rooms.find_many(fields or {})
        return [LiveRoom.from_document(doc) for doc in docs]

    async def list_pk_rooms(self, user_id: str) -> list[LiveRoom]:
        """列出可与该主播 PK 的直播间：单人直播中且不是自己的。"""
        return await self.list_rooms_by_fields({
            "status": RoomStatus.SINGLE.value,
            "creator": {"$ne": user_id},
        })

    # ── 直播间更新 ────────────────────────────────────────────────────

    async def update_room(self, room_id: str, patch: RoomPatch) -> LiveRoom:
        """按 ``RoomPatch`` 更新直播间信息。

        Raises:
            RoomNotFound: 直播间不存在。
            RoomNameUsed: 新名称已被其他直播间使用。
            PKAnchorRequired: 更新后处于 PK 状态但没有 PK 对手。
        """
        room = await self.get_room_by_id(room_id)

        if patch.name and patch.name != room.name:
            taken = await self.rooms.find_one({"_id": {"$ne": room_id}, "name": patch.name})
            if taken is not None:
                logger.info("直播间名称已被其他直播间使用 | name=%s", patch.name)
                raise RoomNameUsed()
            room.name = patch.name
        if patch.status:
            room.status = patch.status
        if patch.rtc_room:
            room.rtc_room = patch.rtc_room
        if patch.play_url:
            room.play_url = patch.play_url
        if patch.pk_anchor_provided:
            room.pk_anchor = patch.pk_anchor or ""

        if room.status is RoomStatus.PK and not room.pk_anchor:
            logger.info("PK 状态的直播间缺少 PK 主播 | room=%s", room_id)
            raise PKAnchorRequired()

        doc = room.to_document()
        doc.pop("_id")
        await self.rooms.update_one({"_id": room_id}, doc)
        return room

    # ── 观众进出 ──────────────────────────────────────────────────────

    async def enter_room(self, user_id: str, room_id: str) -> LiveRoom:
        """以观众身份进入直播间。

        Raises:
            RoomNotFound: 直播间不存在。
            UserNotFound: 用户没有状态记录。
            UserBroadcasting: 用户正在直播。
            UserJoined: 用户正在其他直播间连麦或等待连麦。
        """
        room = await self.get_room_by_id(room_id)
        user = await self.get_active_user(user_id)

        try:
            step = transition(
                user.status, PresenceAction.ENTER_ROOM, same_room=user.room == room_id,
            )
        except ServerError:
            logger.info(
                "用户当前状态无法进入直播间 | user=%s | status=%s | current_room=%s | room=%s",
                user_id, user.status.value, user.room, room_id,
            )
            raise
        if not step.changed:
            return room

        await self.users.update_one(
            {"_id": user_id}, {"status": step.target.value, "room": room_id},
        )
        logger.info("用户进入直播间 | user=%s | room=%s", user_id, room_id)
        return room

    async def leave_room(self, user_id: str, room_id: str) -> None:
        """以观众身份离开直播间。

        直播间可能已被并发关闭，因此找不到直播间不会阻止离开。
        不论用户记录在哪个直播间，都会回到空闲状态。

        Raises:
            UserNotFound: 用户没有状态记录。
            UserBroadcasting: 用户正在直播（主播应关闭直播间而不是离开）。
        """
        try:
            if await self.rooms.find_one({"_id": room_id}) is None:
                logger.info("离开的直播间不存在 | user=%s | room=%s", user_id, room_id)
        except StoreOperationFailed:
            logger.error("查询离开的直播间失败 | user=%s | room=%s", user_id, room_id)

        user = await self.get_active_user(user_id)
        try:
            step = transition(user.status, PresenceAction.LEAVE_ROOM)
        except ServerError:
            logger.info(
                "用户正在直播，无法离开直播间 | user=%s | current_room=%s", user_id, user.room,
            )
            raise

        await self.users.update_one(
            {"_id": user_id},
            {"status": step.target.value, "room": "", "joinPosition": None},
        )
        logger.info("用户离开直播间 | user=%s | room=%s", user_id, room_id)

    # ── 观众查询 ──────────────────────────────────────────────────────

    def _audience_filter(self, room_id: str) -> dict[str, Any]:
        return {"room": room_id, "status": {"$in": _status_values(AUDIENCE_STATUSES)}}

    async def get_audience_number(self, room_id: str) -> int:
        """直播间内的观众人数（包括连麦中和申请连麦的观众）。"""
        room = await self.get_room_by_id(room_id)
        return await self.users.count(self._audience_filter(room.id))

    async def get_all_audiences(self, room_id: str) -> list[ActiveUser]:
        """直播间内的所有观众（包括连麦中和申请连麦的观众）。"""
        room = await self.get_room_by_id(room_id)
        docs = await self.users.find_many(self._audience_filter(room.id))
        return [ActiveUser.from_document(doc) for doc in docs]
