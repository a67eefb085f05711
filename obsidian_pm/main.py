"""
Obsidian PM backend application.

Run with: uvicorn obsidian_pm.main:app
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from obsidian_pm.api import billing, health, notifications
from obsidian_pm.core.config import settings, validate_config
from obsidian_pm.core.errors import register_error_handlers
from obsidian_pm.core.logging import configure_logging, get_logger
from obsidian_pm.core.middleware.request_id import RequestIdMiddleware
from obsidian_pm.core.validation import validate_env

configure_logging(settings.ENV)
validate_env()
validate_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.started_at = time.time()
    get_logger().info("app.startup", extra={"env": settings.ENV})
    try:
        yield
    finally:
        get_logger().info("app.shutdown")


app = FastAPI(title="Obsidian PM", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

app.include_router(health.router)
app.include_router(billing.router, prefix="/api")
app.include_router(notifications.router)
