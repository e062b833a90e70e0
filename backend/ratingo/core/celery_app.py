from celery import Celery
from ratingo.core.config import settings
import os

celery_app = Celery(
    "ratingo",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["ratingo.services.tasks"]
)

celery_app.conf.update(
    result_expires=3600,
    task_acks_late=True,
    worker_max_tasks_per_child=100,  # Restart worker after 100 tasks to bound memory growth
    worker_prefetch_multiplier=1,    # Process one task at a time
    task_compression='gzip',
    result_compression='gzip',

    # Connection settings
    broker_connection_retry_on_startup=True,
    broker_pool_limit=10,

    # RedBeat scheduler configuration
    beat_scheduler='redbeat.schedulers:RedBeatScheduler',
    redbeat_redis_url=settings.redis_url,
    redbeat_key_prefix='ratingo:beat:',

    task_routes={
        # Ingestion worker: trending syncs and the durable task queue
        'ratingo.services.tasks.sync_trending_shows': {'queue': 'ingestion'},
        'ratingo.services.tasks.sync_trending_movies': {'queue': 'ingestion'},
        'ratingo.services.tasks.enqueue_trending_job_task': {'queue': 'ingestion'},
        'ratingo.services.tasks.process_sync_queue': {'queue': 'ingestion'},

        # Maintenance worker: calendar housekeeping
        'ratingo.services.tasks.prune_airings': {'queue': 'maintenance'},
    },

    beat_schedule={
        "sync-trending-shows": {
            "task": "ratingo.services.tasks.sync_trending_shows",
            "schedule": 60 * 60 * 3,  # every 3 hours
        },
        "sync-trending-movies": {
            "task": "ratingo.services.tasks.sync_trending_movies",
            "schedule": 60 * 60 * 3,  # every 3 hours
        },
        "process-sync-queue": {
            "task": "ratingo.services.tasks.process_sync_queue",
            "schedule": 60,  # every minute; no-op when the queue is empty
        },
        "prune-airings-daily": {
            "task": "ratingo.services.tasks.prune_airings",
            "schedule": 60 * 60 * 24,  # daily
        },
    },
    timezone=os.getenv("RATINGO_TIMEZONE") or os.getenv("TZ") or "UTC",
)
