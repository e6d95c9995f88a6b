"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

HTTP 接口的限流配置。

优先按调用方用户 ID（``X-User-Id`` 请求头）限流，缺失时退化为按客户端 IP 限流。
"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


USER_ID_HEADER = "X-User-Id"


def user_or_remote_address(request: Request) -> str:
    """限流 key：已识别用户用 ``user:<id>``，否则用客户端地址。"""
    user_id = request.headers.get(USER_ID_HEADER)
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=user_or_remote_address,
    storage_uri="memory://",
)
