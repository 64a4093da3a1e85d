"""
Celery application configuration.

This configures Celery with Redis as the broker and result backend.
Beat schedule is defined here for periodic tasks.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

# CRITICAL: Load .env BEFORE importing config/settings
# This ensures Celery workers use the same DATABASE_URL as the rest of the service
from dotenv import load_dotenv

backend_dir = Path(__file__).resolve().parent.parent
env_file = backend_dir / ".env"
if not env_file.exists():
    env_file = backend_dir.parent / ".env"
if env_file.exists():
    load_dotenv(env_file)

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging, worker_process_shutdown
from kombu import Exchange, Queue

logger = logging.getLogger(__name__)

# Get Redis URL from environment
REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379")

# Create Celery app
celery_app = Celery(
    "hubspot_sync",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "workers.tasks.sync",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    # Backoff alone can take minutes per entity on a flaky API
    task_time_limit=55 * 60,
    task_soft_time_limit=50 * 60,

    # Result settings
    result_expires=60 * 60 * 24,  # Results expire after 24 hours

    # Worker settings
    # Accounts are synced sequentially; one pull at a time per worker
    worker_prefetch_multiplier=1,
    worker_concurrency=1,

    # Queue configuration
    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("sync", Exchange("sync"), routing_key="sync.#"),
    ),
    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    # Route tasks to specific queues
    task_routes={
        "workers.tasks.sync.*": {"queue": "sync"},
    },
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Hourly HubSpot pull - runs at the top of every hour
    "hourly-hubspot-pull": {
        "task": "workers.tasks.sync.pull_hubspot_data",
        "schedule": crontab(minute=0),
        "options": {"queue": "sync"},
    },
}


@setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Use the service's logging format instead of Celery's default."""
    from config import configure_logging, log_missing_env_vars

    configure_logging()
    log_missing_env_vars(logging.getLogger("config"))


@worker_process_shutdown.connect
def cleanup_db_connections(**kwargs) -> None:
    """Release pooled database connections when a worker process shuts down."""
    from models.database import dispose_engine

    try:
        dispose_engine()
        logger.info("Database connections cleaned up on worker shutdown")
    except Exception as e:
        logger.warning(f"Error cleaning up database connections: {e}")
