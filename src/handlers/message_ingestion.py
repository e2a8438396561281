"""
Handler for POST /messages.

Accepts one inbound email as JSON (e.g. from a mail provider webhook) and
runs it through the full pipeline synchronously.
"""

from __future__ import annotations

import json
import uuid
from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError as ModelValidationError

from models.message import InboundEmail
from utils.error_handling import AppError, ExternalServiceError, json_response, to_response
from utils.logging_config import get_logger

logger = get_logger(__name__)

# Lazy-loaded service to avoid import-time AWS clients
_orchestrator: Optional["OrchestrationService"] = None


def _get_orchestrator():
    """Lazy-load OrchestrationService."""
    global _orchestrator
    if _orchestrator is None:
        from services.orchestration_service import OrchestrationService
        _orchestrator = OrchestrationService()
    return _orchestrator


def lambda_handler(event, context) -> Dict:
    """Validate the payload, process it and return the pipeline result."""
    correlation_id = str(uuid.uuid4())
    try:
        payload = json.loads(event.get("body") or "{}")
        email = InboundEmail.model_validate(payload)
    except (json.JSONDecodeError, ModelValidationError) as exc:
        logger.warning("Invalid message payload", extra={"correlation_id": correlation_id})
        return json_response(
            400,
            {"message": "Invalid request", "error": str(exc), "correlation_id": correlation_id},
        )

    try:
        result = _get_orchestrator().run(email, correlation_id=correlation_id)
    except AppError as exc:
        logger.exception("Message processing failed", extra={"correlation_id": correlation_id})
        return to_response(exc, correlation_id)
    except (BotoCoreError, ClientError) as exc:
        logger.exception("Collaborator unavailable", extra={"correlation_id": correlation_id})
        return to_response(ExternalServiceError("aws", str(exc)), correlation_id)
    except Exception as exc:
        logger.exception("Message processing failed", extra={"correlation_id": correlation_id})
        return json_response(
            500,
            {"message": "Processing failed", "error": str(exc), "correlation_id": correlation_id},
        )

    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": result.model_dump_json(),
    }
