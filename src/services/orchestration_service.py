"""
Sequential email-response pipeline.

normalize -> resolve customer -> assemble context -> complete -> format ->
send -> record. Each pass handles exactly one inbound message; no step reads
state produced by a later one.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from config.settings import Settings
from models.message import InboundEmail
from models.pipeline import (
    OutboundEmail,
    PipelineResult,
    PipelineStatus,
    PipelineTrace,
    SendResult,
)
from models.response import PollSummary
from repositories import build_record_store
from repositories.base import RecordStore
from services.classification_service import escalation_reasons
from services.completion_service import CompletionService
from services.context_service import ContextAssembler
from services.customer_service import CustomerService
from services.error_reporter import ErrorReporter
from services.mail_service import MailService
from services.mailbox_service import InboundListener
from services.message_service import MessageNormalizer
from services.response_service import ResponseFormatter
from utils.logging_config import get_logger

logger = get_logger(__name__)

# Senders we never answer, to avoid mail loops with bounces and auto-responders.
_NO_REPLY_PREFIXES = ("mailer-daemon@", "postmaster@", "no-reply@", "noreply@", "do-not-reply@")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class OrchestrationService:
    """Runs one inbound email through every pipeline stage."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[RecordStore] = None,
        completion: Optional[CompletionService] = None,
        mail: Optional[MailService] = None,
        reporter: Optional[ErrorReporter] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or Settings.from_environment()
        self.clock = clock
        self.normalizer = MessageNormalizer()
        self.customers = CustomerService(store or build_record_store(self.settings), clock)
        self.assembler = ContextAssembler(self.settings)
        self.completion = completion or CompletionService(self.settings)
        self.formatter = ResponseFormatter(self.settings)
        self.mail = mail or MailService(self.settings)
        self.reporter = reporter or ErrorReporter(self.settings)

    def _is_unanswerable(self, sender: str) -> bool:
        own = (self.settings.sender_address or "").lower()
        return sender == own or sender.startswith(_NO_REPLY_PREFIXES)

    def run(self, email: InboundEmail, correlation_id: str) -> PipelineResult:
        """Process one message. Store lookups that fail before sending propagate."""
        started_at = self.clock()
        errors: List[str] = []
        log_ctx = {"correlation_id": correlation_id, "message_id": email.message_id}

        n_start = time.perf_counter()
        message = self.normalizer.normalize(email)
        n_latency = _elapsed_ms(n_start)

        if self._is_unanswerable(message.sender):
            logger.info("Message from no-reply sender skipped", extra=log_ctx)
            return PipelineResult(
                status=PipelineStatus.SKIPPED,
                message=message,
                trace=PipelineTrace(
                    normalize_latency_ms=n_latency,
                    total_latency_ms=n_latency,
                    started_at=started_at,
                    correlation_id=correlation_id,
                ),
            )

        r_start = time.perf_counter()
        customer, is_new = self.customers.resolve(message)
        try:
            history = self.customers.history(customer, limit=self.settings.history_limit)
        except Exception as exc:
            self.reporter.report("history", exc, log_ctx)
            errors.append(f"history: {exc}")
            history = []
        r_latency = _elapsed_ms(r_start)

        reasons = escalation_reasons(
            message.urgent, message.intent, customer.conversion_probability, message.body
        )
        escalated = bool(reasons)

        payload = self.assembler.build(message, customer, history, escalated=escalated)
        completion = self.completion.complete(payload)
        if completion.used_fallback:
            self.reporter.report("completion", completion.error, log_ctx)
            errors.append(f"completion: {completion.error}")

        reply = self.formatter.format(message, customer, completion.text)

        s_start = time.perf_counter()
        status, send_result, delivered = self._dispatch(message, customer, reply, reasons, log_ctx)
        if send_result is not None and not send_result.success:
            errors.append(f"send: {send_result.error}")
        s_latency = _elapsed_ms(s_start)

        w_start = time.perf_counter()
        try:
            customer = self.customers.record_exchange(
                customer,
                message,
                escalated=escalated,
                reply=delivered,
                reply_message_id=send_result.message_id if delivered and send_result else None,
            )
        except Exception as exc:
            # The reply may already be out; the caller still acknowledges the message.
            self.reporter.report("record", exc, log_ctx)
            errors.append(f"record: {exc}")
            status = PipelineStatus.RECORD_FAILED
        w_latency = _elapsed_ms(w_start)

        trace = PipelineTrace(
            normalize_latency_ms=n_latency,
            resolve_latency_ms=r_latency,
            completion_latency_ms=completion.latency_ms,
            send_latency_ms=s_latency,
            record_latency_ms=w_latency,
            total_latency_ms=n_latency + r_latency + completion.latency_ms + s_latency + w_latency,
            started_at=started_at,
            correlation_id=correlation_id,
        )

        logger.info(
            "Message processed",
            extra={
                **log_ctx,
                "status": status.value,
                "intent": message.intent.value,
                "escalated": escalated,
                "is_new_customer": is_new,
                "total_latency_ms": trace.total_latency_ms,
            },
        )

        return PipelineResult(
            status=status,
            message=message,
            customer=customer,
            is_new_customer=is_new,
            escalated=escalated,
            escalation_reasons=reasons,
            reply=reply,
            send_result=send_result,
            used_fallback=completion.used_fallback,
            errors=errors,
            trace=trace,
        )

    def _dispatch(self, message, customer, reply: OutboundEmail, reasons: List[str], log_ctx):
        """
        Decide where the reply goes and send it.

        Returns (status, send result, reply delivered to the customer or None).
        """
        if reasons:
            if not self.settings.escalation_address:
                logger.warning("Escalated message left as draft; no ESCALATION_ADDRESS", extra=log_ctx)
                return PipelineStatus.DRAFTED, None, None
            handoff = self.formatter.format_escalation(message, customer, reply, reasons)
            result = self.mail.send(handoff)
            if not result.success:
                self.reporter.report("escalation_send", result.error, log_ctx)
                return PipelineStatus.SEND_FAILED, result, None
            return PipelineStatus.ESCALATED, result, None

        if not self.settings.auto_send:
            return PipelineStatus.DRAFTED, None, None

        result: SendResult = self.mail.send(reply)
        if not result.success:
            self.reporter.report("send", result.error, log_ctx)
            return PipelineStatus.SEND_FAILED, result, None
        return PipelineStatus.SENT, result, reply

    def process_mailbox(
        self,
        listener: InboundListener,
        correlation_id: str,
        limit: Optional[int] = None,
    ) -> PollSummary:
        """
        Poll once and run every new message through the pipeline.

        Messages that fail before anything was sent stay in the mailbox for the
        next poll; everything else is acknowledged.
        """
        emails = listener.poll(limit or self.settings.poll_limit)
        summary = PollSummary(fetched=len(emails), correlation_id=correlation_id)
        for email in emails:
            try:
                result = self.run(email, correlation_id)
            except Exception as exc:
                logger.exception(
                    "Pipeline failed",
                    extra={"correlation_id": correlation_id, "message_id": email.message_id},
                )
                self.reporter.report("pipeline", exc, {"message_id": email.message_id})
                summary.failed += 1
                summary.errors.append(f"{email.message_id}: {exc}")
                continue
            listener.acknowledge(email)
            summary.processed += 1
            summary.results.append(result)
        return summary
