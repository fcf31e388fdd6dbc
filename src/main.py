"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.rs_common.database import engine
from src.rs_common.errors import AppError
from src.rs_common.redis_client import close_redis, get_redis
from src.rs_common.response import error_response
from src.rs_gateway.middleware.request_log import RequestLogMiddleware
from src.rs_ledger.api.router import router as ledger_router
from src.rs_outbox.api.router import router as outbox_admin_router
from src.rs_payout.api.router import admin_router as payout_admin_router
from src.rs_payout.api.router import payout_service
from src.rs_payout.api.router import router as payout_router
from src.rs_payout.api.router import webhook_router
from src.rs_reservation.api.router import admin_router as reservation_admin_router
from src.rs_reservation.api.router import router as reservation_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis connections. Shutdown: dispose."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await get_redis()
    logger.info("%s started (tz=%s)", settings.APP_NAME, settings.TIMEZONE)
    yield
    await payout_service.aclose()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    if exc.http_status >= 500:
        logger.error("%s %s failed: [%d] %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(ledger_router, prefix="/api/v1")
app.include_router(reservation_router, prefix="/api/v1")
app.include_router(reservation_admin_router, prefix="/api/v1")
app.include_router(payout_router, prefix="/api/v1")
app.include_router(payout_admin_router, prefix="/api/v1")
app.include_router(webhook_router, prefix="/api/v1")
app.include_router(outbox_admin_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
