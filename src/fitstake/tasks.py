# src/fitstake/tasks.py

import asyncio
import time

import redis
from redis.exceptions import LockError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .celery_app import celery_app
from .config import settings
from .metrics import task_total, task_duration
from .sweep import FinalizationSweep
from .utils.logging import setup_logger

logger = setup_logger(__name__, level=settings.log_level)

SWEEP_LOCK_NAME = "fitstake:finalization-sweep"


async def _run_sweep():
    # asyncpg connections are bound to the loop that opened them, so each run gets its own engine
    engine = create_async_engine(settings.database_url, echo=settings.database_echo)
    try:
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return await FinalizationSweep(session_factory=session_factory).run_once()
    finally:
        await engine.dispose()


@celery_app.task(name="finalize_ended_challenges")
def finalize_ended_challenges():
    """Run one finalization sweep unless another worker already holds the sweep lock."""
    start_time = time.time()
    task_total.labels(task_name='finalize_ended_challenges', status='started').inc()

    client = redis.Redis.from_url(settings.redis_url)
    lock = client.lock(SWEEP_LOCK_NAME, timeout=settings.sweep_lock_timeout, blocking=False)
    if not lock.acquire():
        logger.info("Finalization sweep already running on another worker, skipping")
        task_total.labels(task_name='finalize_ended_challenges', status='skipped').inc()
        return {'status': 'skipped'}

    try:
        reports = asyncio.run(_run_sweep()) or []
        task_total.labels(task_name='finalize_ended_challenges', status='success').inc()
        return {
            'status': 'success',
            'processed': len(reports),
            'verified': sum(1 for r in reports if r.verified),
        }
    except Exception as e:
        logger.error(f"Error running finalization sweep: {e}")
        task_total.labels(task_name='finalize_ended_challenges', status='error').inc()
        return {'status': 'error', 'message': str(e)}
    finally:
        task_duration.labels(task_name='finalize_ended_challenges').observe(time.time() - start_time)
        try:
            lock.release()
        except LockError:
            logger.warning("Finalization sweep lock expired before release")
