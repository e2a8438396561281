"""Handler for GET /customers/{email}."""

import uuid
from typing import Optional
from urllib.parse import unquote

from botocore.exceptions import BotoCoreError, ClientError

from models.response import CustomerProfile
from utils.error_handling import (
    ExternalServiceError,
    NotFoundError,
    ValidationError,
    json_response,
    to_response,
)
from utils.logging_config import get_logger
from utils.validators import normalize_email_address

logger = get_logger(__name__)

# Lazy-loaded store to avoid import-time DB connections
_store: Optional["RecordStore"] = None


def _get_store():
    """Lazy-load the configured record store."""
    global _store
    if _store is None:
        from config.settings import Settings
        from repositories import build_record_store
        _store = build_record_store(Settings.from_environment())
    return _store


def _email_from_event(event) -> str:
    path_params = event.get("pathParameters") or {}
    raw = path_params.get("email")
    if not raw:
        path = event.get("requestContext", {}).get("http", {}).get("path", "")
        raw = path.rstrip("/").split("/customers/", 1)[-1] if "/customers/" in path else ""
    try:
        return normalize_email_address(unquote(raw))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def lambda_handler(event, context):
    """Return the customer record and the most recent interactions."""
    correlation_id = str(uuid.uuid4())
    query_params = event.get("queryStringParameters") or {}
    try:
        email = _email_from_event(event)
        limit = int(query_params.get("limit", 10))
        store = _get_store()
        customer = store.get_customer_by_email(email)
        if not customer:
            raise NotFoundError("Customer not found")
        profile = CustomerProfile(
            customer=customer,
            recent_interactions=store.list_interactions(customer.customer_id, limit=limit),
        )
    except ValueError as exc:
        return json_response(400, {"message": str(exc), "correlation_id": correlation_id})
    except (NotFoundError, ValidationError) as exc:
        return to_response(exc, correlation_id)
    except (BotoCoreError, ClientError) as exc:
        logger.exception("Record store unavailable", extra={"correlation_id": correlation_id})
        return to_response(ExternalServiceError("record store", str(exc)), correlation_id)
    except Exception as exc:
        logger.exception("Customer lookup failed", extra={"correlation_id": correlation_id})
        return json_response(
            500,
            {"message": "Lookup failed", "error": str(exc), "correlation_id": correlation_id},
        )

    logger.info("Customer profile served", extra={"customer_id": customer.customer_id})
    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": profile.model_dump_json(),
    }
