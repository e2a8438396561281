"""
Handler for POST /mailbox/poll and the scheduled EventBridge poll.

The listener (and its processed-id cache) lives at module level so warm
invocations skip messages they already answered.
"""

from __future__ import annotations

import json
import uuid
from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from utils.error_handling import ExternalServiceError, json_response, to_response
from utils.logging_config import get_logger

logger = get_logger(__name__)

_orchestrator: Optional["OrchestrationService"] = None
_listener: Optional["InboundListener"] = None


def _get_orchestrator():
    """Lazy-load OrchestrationService."""
    global _orchestrator
    if _orchestrator is None:
        from services.orchestration_service import OrchestrationService
        _orchestrator = OrchestrationService()
    return _orchestrator


def _get_listener():
    """Lazy-load the inbound listener for the configured mailbox backend."""
    global _listener
    if _listener is None:
        from config.settings import Settings
        from services.mailbox_service import InboundListener, build_mailbox_source
        from utils.cache_service import LRUCache

        settings = Settings.from_environment()
        _listener = InboundListener(
            build_mailbox_source(settings),
            LRUCache(max_size=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds),
        )
    return _listener


def _requested_limit(event) -> Optional[int]:
    query = event.get("queryStringParameters") or {}
    raw = query.get("limit")
    if raw is None and event.get("body"):
        raw = json.loads(event["body"]).get("limit")
    if raw is None:
        return None
    limit = int(raw)
    if limit <= 0:
        raise ValueError("limit must be positive")
    return limit


def lambda_handler(event, context) -> Dict:
    """Poll the mailbox once and process every new message."""
    correlation_id = str(uuid.uuid4())
    try:
        limit = _requested_limit(event)
    except (TypeError, ValueError) as exc:
        return json_response(
            400,
            {"message": "Invalid limit", "error": str(exc), "correlation_id": correlation_id},
        )

    try:
        summary = _get_orchestrator().process_mailbox(
            _get_listener(), correlation_id=correlation_id, limit=limit
        )
    except (BotoCoreError, ClientError) as exc:
        logger.exception("Mailbox unavailable", extra={"correlation_id": correlation_id})
        return to_response(ExternalServiceError("mailbox", str(exc)), correlation_id)
    except Exception as exc:
        logger.exception("Mailbox poll failed", extra={"correlation_id": correlation_id})
        return json_response(
            500,
            {"message": "Mailbox poll failed", "error": str(exc), "correlation_id": correlation_id},
        )

    logger.info(
        "Mailbox poll complete",
        extra={
            "correlation_id": correlation_id,
            "fetched": summary.fetched,
            "processed": summary.processed,
            "failed": summary.failed,
        },
    )
    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": summary.model_dump_json(),
    }
