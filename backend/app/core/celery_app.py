"""Celery application configuration."""

from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "episode_hls",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Encoding has its own deadline; leave room for download and upload
    task_time_limit=int(settings.ENCODING_TIMEOUT_SECONDS) + 1800,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.autodiscover_tasks(["app.modules.transcoding"])
