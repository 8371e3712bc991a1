# src/fitstake/main.py
import os
import asyncio
import uvicorn
from typing import Optional

from fastapi import FastAPI, Request # type: ignore
from fastapi.responses import JSONResponse # type: ignore
from sqlalchemy import text

from .api import router
from .config import settings
from .errors import FitstakeError
from .metrics import start_metrics_server
from .models.database import async_session, check_db_connection, engine, init_db
from .services.stats import seed_badges
from .sweep import FinalizationSweep, SweepScheduler
from .utils.logging import setup_logger

logger = setup_logger(__name__, level=settings.log_level)

# FastAPI app
app = FastAPI(title="FitStake")
app.include_router(router)

# In-process sweep, only when no Celery beat runs it
scheduler: Optional[SweepScheduler] = None

@app.exception_handler(FitstakeError)
async def fitstake_error_handler(request: Request, exc: FitstakeError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}

async def wait_for_db(max_retries: int = 5, retry_interval: int = 5):
    """Wait for database to be ready."""
    for i in range(max_retries):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                logger.info("Database is ready")
                return
        except Exception as e:
            if i == max_retries - 1:
                raise
            logger.warning(f"Database not ready, retrying in {retry_interval} seconds: {e}")
            await asyncio.sleep(retry_interval)

@app.on_event("startup")
async def on_startup():
    """Initialize services on startup."""
    global scheduler
    try:
        # 1) Wait for database
        await wait_for_db()

        # 2) Create tables
        await init_db()
        if not await check_db_connection():
            raise Exception("Database connection failed")

        # 3) Seed the badge catalog
        async with async_session() as db:
            await seed_badges(db)
            await db.commit()

        # 4) Start metrics server
        start_metrics_server()

        # 5) Optionally run the finalization sweep in this process
        if settings.run_sweep_in_process:
            scheduler = SweepScheduler(FinalizationSweep())
            scheduler.start()

        logger.info("Application startup completed successfully")
    except Exception as e:
        logger.error(f"Error during startup: {e}")
        raise

@app.on_event("shutdown")
async def on_shutdown():
    """Cleanup on shutdown."""
    if scheduler is not None:
        await scheduler.stop()
    await engine.dispose()
    logger.info("Application shutdown complete")

if __name__ == "__main__":
    uvicorn.run("fitstake.main:app", host="0.0.0.0", port=int(os.environ.get("PORT", 8000)))
