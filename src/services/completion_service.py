"""
Completion service backed by Amazon Bedrock.

Calls the Anthropic messages API through ``invoke_model``. A failed or empty
completion is replaced by ``FALLBACK_TEXT`` so the pipeline can still answer.
"""

from __future__ import annotations

import json
import time
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import Settings
from models.pipeline import CompletionResult, PromptPayload
from utils.logging_config import get_logger

logger = get_logger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"

FALLBACK_TEXT = (
    "Thank you for reaching out. We have received your message and a member of "
    "our team will follow up with you shortly."
)


class CompletionService:
    """Sends role-tagged prompts to a hosted model and returns generated text."""

    def __init__(self, settings: Settings, client=None):
        self.model_id = settings.model_id
        self.client = client or boto3.client(
            "bedrock-runtime",
            region_name=settings.resolved_bedrock_region,
            config=settings.boto_config(),
        )

    def _request_body(self, payload: PromptPayload) -> str:
        body = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": payload.max_tokens,
            "temperature": payload.temperature,
            "messages": [
                {"role": m.role.value, "content": [{"type": "text", "text": m.content}]}
                for m in payload.conversation
            ],
        }
        if payload.system_prompt:
            body["system"] = payload.system_prompt
        return json.dumps(body)

    def complete(self, payload: PromptPayload) -> CompletionResult:
        """Invoke the model; never raises for service failures."""
        start = time.perf_counter()
        error: Optional[str] = None
        text = ""
        try:
            response = self.client.invoke_model(
                modelId=self.model_id,
                contentType="application/json",
                accept="application/json",
                body=self._request_body(payload),
            )
            result = json.loads(response["body"].read())
            text = "".join(
                block.get("text", "")
                for block in result.get("content", [])
                if block.get("type") == "text"
            ).strip()
            if not text:
                error = f"empty completion (stop_reason={result.get('stop_reason')})"
        except (BotoCoreError, ClientError, KeyError, ValueError) as exc:
            error = str(exc)

        latency_ms = int((time.perf_counter() - start) * 1000)
        if error:
            logger.warning(
                "Completion failed; using fallback text",
                extra={"error": error, "model_id": self.model_id},
            )
            return CompletionResult(
                text=FALLBACK_TEXT,
                model_id=self.model_id,
                used_fallback=True,
                latency_ms=latency_ms,
                error=error,
            )

        logger.info(
            "Completion received",
            extra={"model_id": self.model_id, "duration_ms": latency_ms, "length": len(text)},
        )
        return CompletionResult(text=text, model_id=self.model_id, latency_ms=latency_ms)
