import asyncio
import os

from fastapi import FastAPI

from mira.config import settings
from mira.database import SessionLocal, init_db
from mira.logging_config import get_logger, setup_logging
from mira.routers import status, webhook
from mira.services.pipeline import MessagePipeline, build_context
from mira.services.scheduler import MaintenanceScheduler, flush_state, load_state

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="MIRA",
    description="Mercantile Intelligent Response Assistant: WhatsApp bot for tea brokering queries",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(status.router)


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_maintenance_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.maintenance_enabled and _is_env_enabled(os.environ.get("MAINTENANCE_ENABLED"), default=True)


def install_context(target: FastAPI, context) -> None:
    target.state.context = context
    target.state.pipeline = MessagePipeline(context)


@app.on_event("startup")
async def startup() -> None:
    if getattr(app.state, "context", None) is None:
        init_db()
        install_context(app, build_context(settings, session_factory=SessionLocal))

    context = app.state.context
    await load_state(context)
    await context.directory.refresh()

    if _is_maintenance_enabled():
        app.state.scheduler = MaintenanceScheduler(context)
        app.state.scheduler.start()

    logger.info(
        "MIRA started",
        extra={"context": {"transport_ready": context.transport.is_ready, "stores": context.store_sizes()}},
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()
        app.state.scheduler = None

    context = getattr(app.state, "context", None)
    if context is not None:
        if context.background_tasks:
            await asyncio.gather(*context.background_tasks, return_exceptions=True)
        await flush_state(context)
    logger.info("MIRA stopped")
