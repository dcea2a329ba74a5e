"""
Celery tasks package.

Provides background task infrastructure for:
- Scheduled discharge emails
- Scheduled discharge follow-up calls
- Slack notifications
"""

from .celery_app import celery_app
from .discharge_tasks import execute_scheduled_call, send_scheduled_email
from .notification_tasks import post_slack_message

__all__ = [
    "celery_app",
    "execute_scheduled_call",
    "send_scheduled_email",
    "post_slack_message",
]
