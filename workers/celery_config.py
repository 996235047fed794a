"""Celery configuration for background and scheduled tasks."""

from celery.schedules import crontab
from kombu import Exchange, Queue

from core.config import settings

# Broker configuration (Redis)
broker_url = settings.celery_broker_url
result_backend = settings.celery_result_backend
task_always_eager = settings.celery_task_always_eager

# Task routing and serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Task execution settings
task_track_started = True
task_acks_late = True
task_time_limit = 30 * 60  # 30 minutes hard limit
task_soft_time_limit = 25 * 60  # 25 minutes soft limit

# Worker settings
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task modules registered by every worker
imports = (
    "workers.tasks.alerts",
    "workers.tasks.forecasts",
    "workers.tasks.maintenance",
    "workers.tasks.performance",
    "workers.tasks.sla",
)

# Queue configuration with routing
default_exchange = Exchange("vms", type="direct")
task_default_queue = "default"
task_queues = (
    Queue("default", exchange=default_exchange, routing_key="default"),
    Queue("notifications", exchange=default_exchange, routing_key="notifications"),
    Queue("forecasting", exchange=default_exchange, routing_key="forecasting"),
    Queue("monitoring", exchange=default_exchange, routing_key="monitoring"),
)

# Task routing
task_routes = {
    "workers.tasks.alerts.*": {"queue": "notifications"},
    "workers.tasks.forecasts.*": {"queue": "forecasting"},
    "workers.tasks.sla.*": {"queue": "monitoring"},
    "workers.tasks.performance.*": {"queue": "monitoring"},
    "workers.tasks.maintenance.*": {"queue": "default"},
}

# Periodic tasks (celery beat)
beat_schedule = {
    "expire-candidate-ownerships": {
        "task": "workers.tasks.maintenance.expire_ownerships",
        "schedule": crontab(minute=15),
    },
    "release-lapsed-exclusivity": {
        "task": "workers.tasks.maintenance.release_lapsed_exclusivity",
        "schedule": crontab(minute="*/30"),
    },
    "recompute-performance-snapshots": {
        "task": "workers.tasks.performance.recompute_all_snapshots",
        "schedule": crontab(hour=1, minute=0),
    },
    "evaluate-agency-sla": {
        "task": "workers.tasks.sla.evaluate_all_agencies",
        "schedule": crontab(hour=2, minute=0),
    },
    "forecast-active-budgets": {
        "task": "workers.tasks.forecasts.forecast_all_budgets",
        "schedule": crontab(hour=3, minute=0),
    },
}

# Result backend settings
result_expires = 3600  # Results expire after 1 hour
