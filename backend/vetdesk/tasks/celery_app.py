"""
Celery application configuration.

Configures Celery for deferred discharge work with:
- Redis as message broker
- Automatic retry with exponential backoff on tasks
- Separate queues for emails, calls and notifications
"""

import logging

from celery import Celery
from kombu import Exchange, Queue

from ..core.config import settings


logger = logging.getLogger(__name__)


# =============================================================================
# Celery Application
# =============================================================================

celery_app = Celery(
    "vetdesk",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "vetdesk.tasks.discharge_tasks",
        "vetdesk.tasks.notification_tasks",
    ],
)


# =============================================================================
# Celery Configuration
# =============================================================================

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task time limits
    task_time_limit=settings.celery_task_time_limit,
    task_soft_time_limit=settings.celery_task_time_limit - 30,

    # Worker settings
    worker_concurrency=settings.celery_worker_concurrency,
    worker_prefetch_multiplier=1,  # ETA tasks sit in the worker; keep prefetch low
    worker_max_tasks_per_child=1000,

    result_expires=3600,
    # covers the default call delay; longer ETAs may be redelivered and are
    # deduplicated by the executors' row claim
    broker_transport_options={
        "visibility_timeout": 60 * 60 * (settings.default_call_delay_hours + 2),
    },

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",
)


# =============================================================================
# Queue Configuration
# =============================================================================

default_exchange = Exchange("default", type="direct")
discharge_exchange = Exchange("discharge", type="direct")

celery_app.conf.task_queues = (
    Queue("default", default_exchange, routing_key="default"),
    Queue("emails", discharge_exchange, routing_key="emails"),
    Queue("calls", discharge_exchange, routing_key="calls"),
    Queue("notifications", default_exchange, routing_key="notifications"),
)

celery_app.conf.task_routes = {
    "vetdesk.tasks.discharge_tasks.send_scheduled_email": {
        "queue": "emails",
        "routing_key": "emails",
    },
    "vetdesk.tasks.discharge_tasks.execute_scheduled_call": {
        "queue": "calls",
        "routing_key": "calls",
    },
    "vetdesk.tasks.notification_tasks.post_slack_message": {
        "queue": "notifications",
        "routing_key": "notifications",
    },
}
