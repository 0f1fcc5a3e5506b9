"""
FastAPI主应用入口
"""
import logging
import uuid
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager

from hostpanel.core.config import settings
from hostpanel.core.database import engine, Base
from hostpanel.core.errors import LifecycleError
from hostpanel.core.health import check_db, check_redis, check_panel
from hostpanel.core.logging import setup_logging
from hostpanel.api.v1 import api_router
import hostpanel.models  # noqa: F401  注册所有表到 Base.metadata

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    setup_logging()
    if not settings.panel_configured:
        logger.warning("Pterodactyl 面板未配置，审批后将使用模拟开通")
    # 创建数据库表
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="游戏服务器订单、支付审批与自动开通API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个请求生成或透传 X-Request-ID，并写入 request.state"""
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


def _error_response(kind: str, message: str, request_id: str | None = None) -> dict:
    body = {"kind": kind, "message": message}
    if request_id:
        body["request_id"] = request_id
    return body


@app.exception_handler(LifecycleError)
async def lifecycle_exception_handler(request: Request, exc: LifecycleError):
    """业务错误：{kind, message}；开通错误的面板细节只对管理员可见"""
    rid = getattr(request.state, "request_id", None)
    body = exc.to_dict(is_admin=getattr(request.state, "is_admin", False))
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """统一 HTTP 异常响应格式"""
    rid = getattr(request.state, "request_id", None)
    kind = "NotFound" if exc.status_code == 404 else "HTTPError"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_response(
            kind,
            exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            request_id=rid,
        ),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 校验错误统一格式"""
    rid = getattr(request.state, "request_id", None)
    errs = exc.errors()
    message = errs[0].get("msg", "请求参数校验失败") if errs else "请求参数校验失败"
    body = _error_response("ValidationError", message, request_id=rid)
    # ctx 中可能包含异常对象；input 可能是 NaN 等无法序列化为 JSON 的值
    body["errors"] = jsonable_encoder([{k: v for k, v in e.items() if k not in ("ctx", "input")} for e in errs])
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """未捕获异常统一格式"""
    rid = getattr(request.state, "request_id", None)
    logger.exception("未处理异常 request_id=%s", rid)
    return JSONResponse(
        status_code=500,
        content=_error_response("InternalError", "服务器内部错误", request_id=rid),
    )


# 注册路由
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": settings.PROJECT_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查：返回各依赖连通状态"""
    db_ok, db_msg = await check_db()
    redis_ok, redis_msg = check_redis()
    panel_ok, panel_mode = check_panel()
    all_ok = db_ok and redis_ok
    return JSONResponse(
        content={
            "status": "healthy" if all_ok else "degraded",
            "service": "hostpanel-api",
            "dependencies": {
                "database": {"ok": db_ok, "message": db_msg},
                "redis": {"ok": redis_ok, "message": redis_msg},
                "panel": {"ok": panel_ok, "mode": panel_mode},
            },
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "hostpanel.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
