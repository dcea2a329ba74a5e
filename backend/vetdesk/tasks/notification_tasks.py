"""
Celery tasks for outbound notifications.
"""

import logging
from typing import Any, Dict

from celery import shared_task

from ..core.exceptions import ExternalServiceError
from ..services.slack_notifier import post_to_slack


logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(ExternalServiceError,),
    retry_backoff=True,
    retry_backoff_max=120,
    max_retries=3,
)
def post_slack_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Post a prepared Block Kit payload to Slack.

    Transport failures are retried by Celery; a missing webhook URL is not.
    """
    result = post_to_slack(payload)
    if not result["success"]:
        if result["error"] == "Slack webhook URL not configured":
            logger.warning("Slack message dropped: webhook URL not configured")
            return result
        raise ExternalServiceError("slack", result["error"])
    return result
