import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 在应用启动前加载环境变量
load_dotenv()

from app.api.v1 import (  # noqa: E402
    articles,
    conflicts,
    editor_assignments,
    internal,
    messages,
    notifications,
    reviews,
    users,
    workflow,
)
from app.api.v1.admin import review_deadlines as admin_review_deadlines  # noqa: E402
from app.core.middleware import ExceptionHandlerMiddleware, register_exception_handlers  # noqa: E402

logger = logging.getLogger("journaldesk")

_SENTRY_ENABLED = False
try:
    from app.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
except Exception as e:
    # 中文注释: Sentry 任何异常不得阻塞启动
    logger.warning("Sentry init failed (ignored): %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("JournalDesk API starting (env=%s)", os.environ.get("APP_ENV") or "development")
    yield


app = FastAPI(
    title="JournalDesk API",
    description="Editorial workflow backend for academic journals",
    version="1.0.0",
    lifespan=lifespan,
)


def _parse_frontend_origins() -> list[str]:
    """
    解析允许跨域的前端 Origins。

    中文注释:
    - 本地默认: http://localhost:3000
    - 生产/预发: 通过 FRONTEND_ORIGIN 或 FRONTEND_ORIGINS 注入（逗号分隔）
    """
    origins: list[str] = []

    single = (os.environ.get("FRONTEND_ORIGIN") or "").strip()
    if single:
        origins.append(single.rstrip("/"))

    for part in (os.environ.get("FRONTEND_ORIGINS") or "").split(","):
        o = part.strip().rstrip("/")
        if o:
            origins.append(o)

    # 去重保持顺序
    return list(dict.fromkeys(origins)) or ["http://localhost:3000"]


# === 中间件配置 ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ExceptionHandlerMiddleware)
register_exception_handlers(app)

# === 路由注册 ===
app.include_router(users.router, prefix="/api/v1")
app.include_router(articles.router, prefix="/api/v1")
app.include_router(workflow.router, prefix="/api/v1")
app.include_router(editor_assignments.router, prefix="/api/v1")
app.include_router(reviews.router, prefix="/api/v1")
app.include_router(conflicts.router, prefix="/api/v1")
app.include_router(messages.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")
app.include_router(admin_review_deadlines.router, prefix="/api/v1")
app.include_router(internal.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "JournalDesk API is running", "docs": "/docs"}


@app.get("/health")
async def health():
    return {"status": "ok"}
