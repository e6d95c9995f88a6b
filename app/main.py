"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import room_endpoints
from app.core.config import settings
from app.core.errors import ServerError
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.db import (
    ACTIVE_USERS_COLLECTION,
    ROOMS_COLLECTION,
    close_mongo,
    connect_mongo,
    get_collection,
)
from app.db.document_store import DocumentStore
from app.schemas.api_response import ApiResponse
from app.services.room_coordinator import RoomCoordinator

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    await connect_mongo()
    coordinator = RoomCoordinator(
        rooms=DocumentStore(get_collection(ROOMS_COLLECTION)),
        users=DocumentStore(get_collection(ACTIVE_USERS_COLLECTION)),
        room_number_limit=settings.ROOM_NUMBER_LIMIT,
        strict_uniqueness=settings.ROOM_STRICT_UNIQUENESS,
    )
    await coordinator.ensure_indexes()
    app.state.coordinator = coordinator
    logger.info(
        "🚀 应用已启动 | env=%s | room_limit=%d | strict_uniqueness=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.ROOM_NUMBER_LIMIT,
        settings.ROOM_STRICT_UNIQUENESS,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="直播间与用户状态协调服务",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

if not settings.is_prod:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(room_endpoints.router, prefix="/api", tags=["Room & Presence"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(ServerError)
async def server_error_handler(request: Request, exc: ServerError) -> JSONResponse:
    """将业务错误转换为统一的 ApiResponse.fail() 格式。"""
    if exc.status_code >= 500:
        logger.error("业务错误: %s %s -> %s", request.method, request.url, exc.msg)
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse.from_error(exc).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """将 HTTP 错误（如缺少身份请求头）转换为统一的 ApiResponse.fail() 格式。"""
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse.fail(msg=str(exc.detail), code=exc.status_code).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    """请求参数校验失败，``data`` 中携带字段级错误明细。"""
    logger.info("请求参数校验失败: %s %s", request.method, request.url)
    return JSONResponse(
        status_code=422,
        content=ApiResponse.fail(
            msg="请求参数校验失败", code=422, data=jsonable_encoder(exc.errors()),
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check() -> JSONResponse:
    """验证服务是否正常运行。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
