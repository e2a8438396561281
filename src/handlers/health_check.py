"""Lightweight health check handler."""

from datetime import datetime, timezone

from config.settings import Settings
from utils.error_handling import json_response


def lambda_handler(event, context):
    """Return a simple 200 response with the active backends."""
    settings = Settings.from_environment()
    return json_response(
        200,
        {
            "status": "ok",
            "environment": settings.environment,
            "record_backend": settings.record_backend,
            "mailbox_backend": settings.mailbox_backend,
            "model_id": settings.model_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
