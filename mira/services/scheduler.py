import asyncio
from typing import Awaitable, Callable, Optional, Union

from mira.errors import PersistenceFailure
from mira.logging_config import get_logger
from mira.services.alert_service import alert_error
from mira.services.pipeline import BotContext

logger = get_logger("scheduler")

Job = Callable[[], Union[Awaitable[object], object]]


async def _run_periodically(name: str, interval_seconds: float, job: Job) -> None:
    interval_seconds = max(interval_seconds, 0.1)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            result = job()
            if asyncio.iscoroutine(result):
                result = await result
            logger.debug("Maintenance task ran", extra={"context": {"task": name, "result": result}})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error("Maintenance task failed", extra={"context": {"task": name, "error": str(exc)}})


async def flush_state(context: BotContext) -> Optional[dict]:
    """Write every store to durable storage in a worker thread."""
    if context.repository is None:
        return None
    results = await asyncio.to_thread(context.repository.flush_all, context)
    failed = [table for table, count in results.items() if count is None]
    if failed:
        await alert_error("State flush failed", {"tables": ", ".join(failed)})
    return results


async def load_state(context: BotContext) -> Optional[dict]:
    if context.repository is None:
        return None
    try:
        return await asyncio.to_thread(context.repository.load_all, context)
    except PersistenceFailure as e:
        await alert_error("State load failed, starting empty", {"error": str(e)})
        return None


class MaintenanceScheduler:
    """Periodic sweeps and snapshot flushes, each as its own asyncio task."""

    def __init__(self, context: BotContext):
        self.context = context
        self._tasks: list[asyncio.Task] = []

    def jobs(self) -> list[tuple[str, float, Job]]:
        ctx = self.context
        settings = ctx.settings
        return [
            ("directory_refresh", settings.directory_refresh_interval_seconds, ctx.directory.refresh),
            ("dedup_sweep", settings.dedup_sweep_interval_seconds, ctx.dedup.cleanup),
            ("rate_limit_sweep", settings.rate_limit_sweep_interval_seconds, ctx.rate_limiter.cleanup),
            ("ticket_sweep", settings.ticket_sweep_interval_seconds, ctx.tickets.cleanup),
            ("state_flush", settings.flush_interval_seconds, lambda: flush_state(ctx)),
        ]

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(_run_periodically(name, interval, job), name=f"mira-{name}")
            for name, interval, job in self.jobs()
        ]
        logger.info("Maintenance scheduler started", extra={"context": {"tasks": len(self._tasks)}})

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Maintenance scheduler stopped")
