from fastapi import Depends, Header, HTTPException, Request

from app.core.rate_limit import USER_ID_HEADER
from app.services.room_coordinator import RoomCoordinator


def get_coordinator(request: Request) -> RoomCoordinator:
    return request.app.state.coordinator


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    coordinator: RoomCoordinator = Depends(get_coordinator),
) -> str:
    """读取网关注入的用户 ID，并确保该用户有状态记录。"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail=f"缺少 {USER_ID_HEADER} 请求头")
    await coordinator.ensure_active_user(x_user_id)
    return x_user_id
