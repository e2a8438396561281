"""Forwards pipeline failures to an SNS topic in addition to the log."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import Settings
from utils.logging_config import get_logger

logger = get_logger(__name__)


class ErrorReporter:
    """Logs every failure; publishes it when ``ERROR_TOPIC_ARN`` is configured."""

    def __init__(self, settings: Settings, client=None):
        self.topic_arn = settings.error_topic_arn
        self.environment = settings.environment
        self._client = client
        self._settings = settings

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "sns",
                region_name=self._settings.aws_region,
                config=self._settings.boto_config(),
            )
        return self._client

    def report(self, stage: str, error: Any, context: Optional[Dict[str, Any]] = None) -> None:
        details = {
            "stage": stage,
            "error": str(error),
            "environment": self.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(context or {}),
        }
        logger.error("Pipeline step failed", extra=details)
        if not self.topic_arn:
            return
        try:
            self.client.publish(
                TopicArn=self.topic_arn,
                Subject=f"[{self.environment}] support responder: {stage} failed"[:100],
                Message=json.dumps(details, default=str),
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Error forwarding failed", extra={"error": str(exc)})
