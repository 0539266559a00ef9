import asyncio
import os

from fastapi import FastAPI, Request
from redis.exceptions import RedisError

from tgsession.logging_config import get_logger, setup_logging
from tgsession.routers import telegram_webhook
from tgsession.services.bot import Bot

worker_logger = get_logger("processing_worker")


def _is_processing_worker_enabled(bot: Bot) -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return bot.settings.processing_worker_enabled


async def _processing_worker_loop(bot: Bot) -> None:
    interval_seconds = max(bot.settings.processing_interval_seconds, 0.05)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            # Drain every ready conversation before sleeping again
            while await asyncio.to_thread(bot.processing):
                pass
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                "Processing worker loop failed",
                extra={"context": {"error": str(exc), "error_type": type(exc).__name__}},
            )


def create_app(bot: Bot) -> FastAPI:
    """Build the HTTP surface for `bot`: webhook intake, health and the processing worker."""
    setup_logging(bot.settings.log_level)

    app = FastAPI(
        title="tgsession",
        description="Telegram bot session service",
        version="0.1.0",
    )
    app.state.bot = bot
    app.state.worker_task = None

    app.include_router(telegram_webhook.router)

    @app.on_event("startup")
    async def start_processing_worker() -> None:
        if not _is_processing_worker_enabled(bot):
            return
        if app.state.worker_task is None or app.state.worker_task.done():
            app.state.worker_task = asyncio.create_task(_processing_worker_loop(bot))
            worker_logger.info("Processing worker started")

    @app.on_event("shutdown")
    async def stop_processing_worker() -> None:
        task = app.state.worker_task
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        app.state.worker_task = None

    @app.get("/health")
    async def health(request: Request):
        try:
            store_ok = request.app.state.bot.store.ping()
        except RedisError as e:
            worker_logger.warning(f"Store ping failed: {e}")
            store_ok = False
        return {"status": "ok" if store_ok else "degraded", "store": store_ok}

    return app
