"""
app.api.room_endpoints
~~~~~~~~~~~~~~~~~~~~~~

直播间 REST 接口 —— 直播间的创建、关闭、更新、查询，以及观众进入/离开。

调用方身份来自网关注入的 ``X-User-Id`` 请求头。

端点:
  - ``POST   /rooms``                    → 创建直播间
  - ``GET    /rooms``                    → 列出直播间（可按 creator / status 过滤）
  - ``GET    /rooms/pk``                 → 列出可 PK 的直播间
  - ``GET    /rooms/{room_id}``          → 获取直播间详情
  - ``PATCH  /rooms/{room_id}``          → 更新直播间（仅创建者）
  - ``DELETE /rooms/{room_id}``          → 关闭直播间（仅创建者）
  - ``POST   /rooms/{room_id}/enter``    → 以观众身份进入
  - ``POST   /rooms/{room_id}/leave``    → 以观众身份离开
  - ``GET    /rooms/{room_id}/audiences`` → 观众列表
  - ``GET    /users/me``                 → 当前用户状态
"""
import uuid

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_coordinator, get_current_user_id
from app.core.config import settings
from app.core.rate_limit import limiter
from app.schemas.api_response import ApiResponse
from app.schemas.live_room import (
    ActiveUser,
    AudienceData,
    CreateRoomRequest,
    LiveRoom,
    Reconciled,
    RoomPatch,
    RoomStatus,
)
from app.services.room_coordinator import RoomCoordinator

router: APIRouter = APIRouter()


# ── 直播间管理端点 ────────────────────────────────────────────────────

@router.post("/rooms", summary="创建直播间", response_model=ApiResponse[Reconciled[LiveRoom]])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def create_room(
    request: Request,
    body: CreateRoomRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """创建直播间；同一用户以相同名称重复创建时返回已有直播间。"""
    room = LiveRoom(
        id=uuid.uuid4().hex,
        name=body.name,
        creator=user_id,
        rtc_room=body.rtc_room,
        play_url=body.play_url,
    )
    result = await coordinator.create_room(room)
    return ApiResponse.ok(data=result)


@router.get("/rooms", summary="列出直播间", response_model=ApiResponse[list[LiveRoom]])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def list_rooms(
    request: Request,
    creator: str | None = Query(None, description="按创建者过滤"),
    status: RoomStatus | None = Query(None, description="按直播间状态过滤"),
    _: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """列出直播间，不带过滤条件时返回全部直播间。"""
    fields: dict[str, str] = {}
    if creator:
        fields["creator"] = creator
    if status:
        fields["status"] = status.value
    if fields:
        rooms = await coordinator.list_rooms_by_fields(fields)
    else:
        rooms = await coordinator.list_all_rooms()
    return ApiResponse.ok(data=rooms)


@router.get("/rooms/pk", summary="列出可 PK 的直播间", response_model=ApiResponse[list[LiveRoom]])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def list_pk_rooms(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    rooms = await coordinator.list_pk_rooms(user_id)
    return ApiResponse.ok(data=rooms)


@router.get("/rooms/{room_id}", summary="获取直播间详情", response_model=ApiResponse[LiveRoom])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def get_room(
    request: Request,
    room_id: str,
    _: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    room = await coordinator.get_room_by_id(room_id)
    return ApiResponse.ok(data=room)


@router.patch("/rooms/{room_id}", summary="更新直播间", response_model=ApiResponse[LiveRoom])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def update_room(
    request: Request,
    room_id: str,
    patch: RoomPatch,
    user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """更新直播间信息，只有创建者可以更新。

    Args:
        room_id: 直播间 ID。
        patch: 需要修改的字段，未出现的字段保持不变。
    """
    # 不是创建者时按直播间不存在处理
    await coordinator.get_room_by_fields({"_id": room_id, "creator": user_id})
    room = await coordinator.update_room(room_id, patch)
    return ApiResponse.ok(data=room)


@router.delete("/rooms/{room_id}", summary="关闭直播间", response_model=ApiResponse[Reconciled[LiveRoom]])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def close_room(
    request: Request,
    room_id: str,
    user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    result = await coordinator.close_room(user_id, room_id)
    return ApiResponse.ok(data=result)


# ── 观众端点 ──────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/enter", summary="进入直播间", response_model=ApiResponse[LiveRoom])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def enter_room(
    request: Request,
    room_id: str,
    user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    room = await coordinator.enter_room(user_id, room_id)
    return ApiResponse.ok(data=room)


@router.post("/rooms/{room_id}/leave", summary="离开直播间", response_model=ApiResponse[None])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def leave_room(
    request: Request,
    room_id: str,
    user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    await coordinator.leave_room(user_id, room_id)
    return ApiResponse.ok(data=None)


@router.get(
    "/rooms/{room_id}/audiences",
    summary="获取直播间观众",
    response_model=ApiResponse[AudienceData],
)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def list_audiences(
    request: Request,
    room_id: str,
    _: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """返回直播间内所有观众（包括连麦中和申请连麦的观众）。"""
    audiences = await coordinator.get_all_audiences(room_id)
    return ApiResponse.ok(
        data=AudienceData(room_id=room_id, total=len(audiences), audiences=audiences),
    )


@router.get("/users/me", summary="获取当前用户状态", response_model=ApiResponse[ActiveUser])
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def get_me(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    user = await coordinator.get_active_user(user_id)
    return ApiResponse.ok(data=user)
