"""Celery configuration from environment variables."""

import os

from celery.schedules import crontab

# Broker and backend (Redis)
broker_url = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
result_backend = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

# Serialization
task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]

# Timezone
timezone = "UTC"
enable_utc = True

# Task settings
task_track_started = True
task_time_limit = 1800
task_soft_time_limit = 1700

task_default_retry_delay = 60
task_max_retries = 3

task_default_queue = "default"
task_queues = {
    "default": {},
    "subscriptions": {},
}

beat_schedule = {
    "auto-downgrade-expired-projects": {
        "task": "stackbit_api.workers.tasks.auto_downgrade_expired_projects",
        "schedule": 3600.0,
        "options": {"queue": "subscriptions"},
    },
    "detect-out-of-sync-paid-projects": {
        "task": "stackbit_api.workers.tasks.detect_out_of_sync_paid_projects",
        "schedule": crontab(hour=6, minute=0),
        "options": {"queue": "subscriptions"},
    },
}

# Results expire after 24 hours
result_expires = 86400
