"""
Single entrypoint Lambda that routes HTTP API requests to thin handler modules.

One Lambda keeps the dedupe cache and boto3 clients warm across routes.
"""

from typing import Callable, Tuple

from utils.error_handling import json_response

from . import customer_lookup, health_check, mailbox_poll, message_ingestion


def lambda_handler(event, context):
    """
    Entry point invoked by API Gateway HTTP API or an EventBridge schedule.

    Scheduled events carry no HTTP context and go straight to the mailbox poll.
    """
    if event.get("source") == "aws.events" or event.get("detail-type") == "Scheduled Event":
        return mailbox_poll.lambda_handler(event, context)

    method = event.get("requestContext", {}).get("http", {}).get("method", "")
    path = event.get("requestContext", {}).get("http", {}).get("path", "")
    route_key = f"{method.upper()} {path}"

    # Prefix match so path parameters (e.g. /customers/{email}) route correctly.
    route_table: Tuple[Tuple[str, Callable], ...] = (
        ("GET /health", health_check.lambda_handler),
        ("POST /messages", message_ingestion.lambda_handler),
        ("POST /mailbox/poll", mailbox_poll.lambda_handler),
        ("GET /customers/", customer_lookup.lambda_handler),
    )

    for prefix, handler in route_table:
        if route_key.startswith(prefix):
            return handler(event, context)

    return json_response(404, {"message": "Route not found", "route": route_key})
