"""Celery app factory."""

import asyncio
from typing import Any, Awaitable, Callable

from celery import Celery

celery_app = Celery("vms")
celery_app.config_from_object("workers.celery_config")


def run_async(func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
    """
    Run an async service function from a sync task.

    Each call gets a fresh event loop, so pooled connections bound to the
    loop are disposed before it closes.
    """
    from database.engine import close_db

    async def _run():
        try:
            return await func(*args, **kwargs)
        finally:
            await close_db()

    return asyncio.run(_run())
