"""Enqueueing side of the background sweeps run by ``billing.worker``."""

import logging
from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from billing.core.config import settings

logger = logging.getLogger(__name__)

redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)

RECURRING_SWEEP = "process_recurring_templates_task"
REMINDER_SWEEP = "process_payment_reminders_task"
OVERDUE_SWEEP = "mark_overdue_invoices_task"
SWEEP_TASKS = frozenset({RECURRING_SWEEP, REMINDER_SWEEP, OVERDUE_SWEEP})


async def get_redis_pool() -> ArqRedis:
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job | None:
    """Enqueue ``task_name`` on the worker queue.

    Returns None when arq refuses the job because one with the same
    ``_job_id`` is already queued or running.
    """
    pool = await get_redis_pool()
    try:
        return await pool.enqueue_job(task_name, *args, **kwargs)
    finally:
        await pool.close()


async def enqueue_sweep(task_name: str) -> Job | None:
    """Run a sweep outside its cron schedule.

    Sweeps share a fixed job id, so a manual trigger never overlaps an
    identical sweep that is still pending.
    """
    if task_name not in SWEEP_TASKS:
        raise ValueError(f"Unknown sweep: {task_name}")
    job = await enqueue_task(task_name, _job_id=f"manual:{task_name}")
    if job is None:
        logger.info("Sweep %s already queued; skipping", task_name)
    return job


async def enqueue_recurring_sweep() -> Job | None:
    return await enqueue_sweep(RECURRING_SWEEP)


async def enqueue_reminder_sweep() -> Job | None:
    return await enqueue_sweep(REMINDER_SWEEP)


async def enqueue_overdue_sweep() -> Job | None:
    return await enqueue_sweep(OVERDUE_SWEEP)
