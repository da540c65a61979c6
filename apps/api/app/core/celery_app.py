from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "pipeline_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.pipeline.tasks"],
)
celery_app.conf.timezone = settings.scheduler_timezone
celery_app.conf.enable_utc = True
celery_app.conf.beat_schedule = {
    "pipeline-auto-close-month": {
        "task": "app.pipeline.tasks.auto_close_month",
        "schedule": crontab(minute=0, hour=0),
    },
}
