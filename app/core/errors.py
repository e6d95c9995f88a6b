"""
app.core.errors
~~~~~~~~~~~~~~~

业务错误分类。

每一种失败都有独立的异常类型，携带业务状态码 ``code`` 和 HTTP 状态码
``status_code``，由 ``app.main`` 中的异常处理器统一转换为 ``ApiResponse.fail()``。
"""
from __future__ import annotations


class ServerError(Exception):
    """所有业务错误的基类。

    Attributes:
        code: 业务状态码，写入应答体的 ``code`` 字段。
        status_code: 对应的 HTTP 状态码。
        msg: 人类可读的错误描述。
    """

    code: int = 50000
    status_code: int = 500
    msg: str = "服务器内部错误"

    def __init__(self, msg: str | None = None) -> None:
        self.msg = msg or type(self).msg
        super().__init__(self.msg)


# ── 直播间 ────────────────────────────────────────────────────────────

class RoomNotFound(ServerError):
    code = 40401
    status_code = 404
    msg = "直播间不存在"


class RoomNameUsed(ServerError):
    code = 40901
    status_code = 409
    msg = "直播间名称已被占用"


class CanOnlyCreateOneRoom(ServerError):
    code = 40902
    status_code = 409
    msg = "每个用户只能创建一个直播间"


class TooManyRooms(ServerError):
    code = 50301
    status_code = 503
    msg = "直播间数量已达上限"


class PKAnchorRequired(ServerError):
    """PK 状态的直播间必须指定 PK 对手。"""

    code = 40001
    status_code = 400
    msg = "PK 状态的直播间必须指定 PK 主播"


# ── 用户状态 ──────────────────────────────────────────────────────────

class UserNotFound(ServerError):
    code = 40402
    status_code = 404
    msg = "用户不存在"


class UserWatching(ServerError):
    code = 40903
    status_code = 409
    msg = "用户正在观看其他直播"


class UserJoined(ServerError):
    code = 40904
    status_code = 409
    msg = "用户正在连麦或等待连麦"


class UserBroadcasting(ServerError):
    code = 40905
    status_code = 409
    msg = "用户正在直播中"


# ── 存储 ──────────────────────────────────────────────────────────────

class StoreOperationFailed(ServerError):
    code = 50001
    status_code = 500
    msg = "数据库操作失败"


class DuplicateKey(StoreOperationFailed):
    """写入违反唯一索引。

    Attributes:
        field: 触发冲突的字段名（无法识别时为 ``None``）。
    """

    code = 50002
    msg = "唯一索引冲突"

    def __init__(self, field: str | None = None, msg: str | None = None) -> None:
        self.field = field
        super().__init__(msg)
