"""
Process-wide logging setup.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from .config import settings
from .log_shipper import LogShipper, LogShippingHandler


TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging() -> Optional[LogShipper]:
    """
    Configure the root logger from settings.

    Returns:
        The started LogShipper when log shipping is enabled, else None
    """
    handler = logging.StreamHandler()
    if settings.log_format.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logging.basicConfig(level=settings.log_level, handlers=[handler], force=True)

    if not (settings.log_shipping_enabled and settings.log_ingest_url):
        return None

    shipper = LogShipper(
        url=settings.log_ingest_url,
        token=settings.log_ingest_token,
        batch_size=settings.log_batch_size,
        flush_interval=settings.log_flush_interval_seconds,
    )
    shipper.start()
    logging.getLogger().addHandler(
        LogShippingHandler(shipper, service=settings.app_name, environment=settings.environment)
    )
    return shipper
