"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

用户状态机 —— 用一张显式的状态转换表描述各操作对用户状态的要求。

表中每一项为 ``(当前状态, 操作) → 目标状态 | 拒绝原因``：

==================  ============  =======  ================  ================
当前状态            createRoom    dismiss  enterRoom         leaveRoom
==================  ============  =======  ================  ================
idle                singleLive    -        watching          idle
singleLive/pk*      singleLive    -        UserBroadcasting  UserBroadcasting
watching            UserWatching  idle     watching          idle
joinWait/joined     UserJoined    idle     UserJoined [#]_   idle
==================  ============  =======  ================  ================

.. [#] 在同一个直播间内重复进入时保持原状态，不报错。

``-`` 表示该操作不影响此状态。本模块不访问存储，可独立测试。
"""
from __future__ import annotations

from enum import Enum
from typing import NamedTuple

from app.core.errors import ServerError, UserBroadcasting, UserJoined, UserWatching
from app.schemas.live_room import UserStatus


class PresenceAction(str, Enum):
    """会改变用户状态的操作。"""

    CREATE_ROOM = "createRoom"  # 创建直播间（创建者）
    DISMISS = "dismiss"  # 直播间关闭后遣散观众
    ENTER_ROOM = "enterRoom"  # 以观众身份进入直播间
    LEAVE_ROOM = "leaveRoom"  # 以观众身份离开直播间


BROADCASTING_STATUSES: frozenset[UserStatus] = frozenset({
    UserStatus.SINGLE_LIVE,
    UserStatus.PK_WAIT,
    UserStatus.PK_LIVE,
})
JOINING_STATUSES: frozenset[UserStatus] = frozenset({
    UserStatus.JOIN_WAIT,
    UserStatus.JOINED,
})
AUDIENCE_STATUSES: frozenset[UserStatus] = JOINING_STATUSES | {UserStatus.WATCHING}

Outcome = UserStatus | type[ServerError]


def _every(statuses: frozenset[UserStatus], outcome: Outcome) -> dict[UserStatus, Outcome]:
    return {status: outcome for status in statuses}


TRANSITIONS: dict[PresenceAction, dict[UserStatus, Outcome]] = {
    PresenceAction.CREATE_ROOM: {
        UserStatus.IDLE: UserStatus.SINGLE_LIVE,
        **_every(BROADCASTING_STATUSES, UserStatus.SINGLE_LIVE),
        UserStatus.WATCHING: UserWatching,
        **_every(JOINING_STATUSES, UserJoined),
    },
    PresenceAction.DISMISS: _every(AUDIENCE_STATUSES, UserStatus.IDLE),
    PresenceAction.ENTER_ROOM: {
        UserStatus.IDLE: UserStatus.WATCHING,
        UserStatus.WATCHING: UserStatus.WATCHING,
        **_every(BROADCASTING_STATUSES, UserBroadcasting),
        **_every(JOINING_STATUSES, UserJoined),
    },
    PresenceAction.LEAVE_ROOM: {
        UserStatus.IDLE: UserStatus.IDLE,
        **_every(AUDIENCE_STATUSES, UserStatus.IDLE),
        **_every(BROADCASTING_STATUSES, UserBroadcasting),
    },
}

# 在同一直播间内重复执行时保持原状态的组合
_SAME_ROOM_NOOPS: frozenset[tuple[PresenceAction, UserStatus]] = frozenset(
    (PresenceAction.ENTER_ROOM, status) for status in JOINING_STATUSES
)


class Transition(NamedTuple):
    """一次状态转换的结果。

    Attributes:
        target: 目标状态。
        changed: 是否需要写入存储；为 ``False`` 时保持原状态。
    """

    target: UserStatus
    changed: bool = True


def transition(
    current: UserStatus,
    action: PresenceAction,
    *,
    same_room: bool = False,
) -> Transition:
    """根据转换表计算 ``current`` 状态执行 ``action`` 后的结果。

    Args:
        current: 用户当前状态。
        action: 要执行的操作。
        same_room: 用户当前所在直播间是否就是操作的目标直播间。

    Returns:
        ``Transition``；操作不影响当前状态时 ``changed`` 为 ``False``。

    Raises:
        ServerError: 当前状态不允许执行该操作（``UserWatching`` /
            ``UserJoined`` / ``UserBroadcasting``）。
    """
    if same_room and (action, current) in _SAME_ROOM_NOOPS:
        return Transition(current, changed=False)

    outcome = TRANSITIONS[action].get(current)
    if outcome is None:
        return Transition(current, changed=False)
    if isinstance(outcome, UserStatus):
        return Transition(outcome)
    raise outcome()


def affected_statuses(action: PresenceAction) -> frozenset[UserStatus]:
    """返回会被 ``action`` 转换到新状态（而非拒绝）的所有状态。"""
    return frozenset(
        status
        for status, outcome in TRANSITIONS[action].items()
        if isinstance(outcome, UserStatus)
    )
