from celery import Celery
from .config import settings

celery_app = Celery(
    "fitstake",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["fitstake.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "finalize-ended-challenges": {
            "task": "finalize_ended_challenges",
            "schedule": settings.sweep_interval_seconds,
            "options": {"expires": settings.sweep_interval_seconds},
        },
    },
)
