"""
Celery application configuration for Flat Finder background tasks.
Uses Redis as message broker.
"""
import os
from dotenv import load_dotenv
from celery import Celery
from celery.schedules import crontab

# Load environment variables from .env file
load_dotenv()

# Redis URL for message broker
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Create Celery app
celery_app = Celery(
    "flatfinder",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "app.tasks.geocode_tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="Asia/Singapore",
    enable_utc=True,

    # Warm-ups are idempotent, so re-running after a lost worker is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    result_expires=86400,  # 24 hours

    # A cold warm-up of three towns is a few thousand throttled lookups
    task_soft_time_limit=3600,
    task_time_limit=5400,
)

celery_app.conf.beat_schedule = {
    # Refill the geocode cache with new blocks after the nightly resale data refresh
    "warm-geocode-cache": {
        "task": "app.tasks.geocode_tasks.warm_geocode_cache",
        "schedule": crontab(hour=3, minute=0),
    },
}

celery_app.conf.task_routes = {
    "app.tasks.geocode_tasks.*": {"queue": "geocoding"},
}


def get_celery_app() -> Celery:
    """Get the Celery application instance."""
    return celery_app
