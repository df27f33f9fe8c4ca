"""Celery app configuration for background anchoring.

Broker: Redis
Tasks: anchor submission (``ANCHOR_DISPATCH=celery``) and a periodic sweep
of anchors left pending.
"""

from __future__ import annotations

import os

from celery import Celery

# Celery configuration from environment
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")
SWEEP_INTERVAL_SECONDS = float(os.getenv("ANCHOR_SWEEP_INTERVAL_SECONDS", "60"))

# Create Celery app
celery_app = Celery(
    "proofvault",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["proofvault.workers.tasks"],
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
    # Task tracking
    task_track_started=True,
    # Timeouts: 30 polls x 2 s plus submission stays well inside these
    task_time_limit=600,
    task_soft_time_limit=540,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=200,
    result_expires=3600,
    # Broker settings
    broker_connection_retry_on_startup=True,
    # Task routing
    task_routes={
        "proofvault.workers.tasks.anchor_proof": {"queue": "anchoring"},
        "proofvault.workers.tasks.refresh_pending_anchors": {"queue": "anchoring"},
    },
    beat_schedule={
        "refresh-pending-anchors": {
            "task": "proofvault.workers.tasks.refresh_pending_anchors",
            "schedule": SWEEP_INTERVAL_SECONDS,
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
