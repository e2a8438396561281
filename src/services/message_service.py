"""
Inbound message parsing and normalization.

Raw MIME bytes (SES inbound objects, ``.eml`` files) become ``InboundEmail``;
``MessageNormalizer`` turns that into the transient ``NormalizedMessage`` the
rest of the pipeline works from.
"""

from __future__ import annotations

import hashlib
import re
from datetime import timezone
from email import policy
from email.parser import BytesParser
from email.utils import getaddresses, parseaddr, parsedate_to_datetime
from typing import List, Optional

from models.message import InboundEmail, NormalizedMessage
from services.classification_service import classify_intent, detect_urgency
from utils.logging_config import get_logger
from utils.text import html_to_text, strip_quoted_reply

logger = get_logger(__name__)

_MESSAGE_ID = re.compile(r"<[^<>\s]+>")


def _split_message_ids(header: Optional[str]) -> List[str]:
    if not header:
        return []
    return _MESSAGE_ID.findall(str(header))


def _part_text(part) -> str:
    """Decoded text of a MIME part; unknown charsets fall back to lenient UTF-8."""
    try:
        return part.get_content()
    except LookupError:
        logger.warning("Unknown charset, decoding as UTF-8", extra={"charset": part.get_content_charset()})
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", "replace")


def parse_raw_email(raw: bytes, source_key: Optional[str] = None) -> InboundEmail:
    """Extract sender, subject, bodies and threading headers from MIME bytes."""
    if not raw:
        raise ValueError("raw message is empty")
    message = BytesParser(policy=policy.default).parsebytes(raw)

    # Prefer Reply-To so replies reach the person rather than a relay address.
    reply_to = getaddresses([str(message.get("Reply-To", ""))])
    sender_name, sender = parseaddr(str(message.get("From", "")))
    if reply_to and reply_to[0][1]:
        sender_name = reply_to[0][0] or sender_name
        sender = reply_to[0][1]

    text_body = None
    html_body = None
    plain_part = message.get_body(preferencelist=("plain",))
    if plain_part is not None:
        text_body = _part_text(plain_part)
    html_part = message.get_body(preferencelist=("html",))
    if html_part is not None:
        html_body = _part_text(html_part)

    has_attachments = any(True for _ in message.iter_attachments())

    received_at = None
    if message.get("Date"):
        try:
            received_at = parsedate_to_datetime(str(message["Date"]))
        except (TypeError, ValueError):
            logger.warning("Unparseable Date header", extra={"source_key": source_key})
        if received_at is not None and received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=timezone.utc)

    message_ids = _split_message_ids(message.get("Message-ID"))
    if message_ids:
        message_id = message_ids[0]
    else:
        message_id = f"<{hashlib.sha256(raw).hexdigest()[:32]}@generated.local>"

    in_reply_to = _split_message_ids(message.get("In-Reply-To"))

    return InboundEmail(
        message_id=message_id,
        sender=sender,
        sender_name=sender_name or None,
        subject=str(message.get("Subject", "") or "").strip(),
        text_body=text_body,
        html_body=html_body,
        in_reply_to=in_reply_to[0] if in_reply_to else None,
        references=_split_message_ids(message.get("References")),
        has_attachments=has_attachments,
        received_at=received_at,
        source_key=source_key,
    )


def thread_id_for(email: InboundEmail) -> str:
    """The thread root: first References id, else In-Reply-To, else the message itself."""
    if email.references:
        return email.references[0]
    if email.in_reply_to:
        return email.in_reply_to
    return email.message_id


class MessageNormalizer:
    """Builds the classified, plain-text view of an inbound email."""

    def normalize(self, email: InboundEmail) -> NormalizedMessage:
        if email.text_body and email.text_body.strip():
            body = email.text_body
        elif email.html_body:
            body = html_to_text(email.html_body)
        else:
            body = ""
        body = strip_quoted_reply(body)

        match = classify_intent(body)
        urgent = detect_urgency(body, email.subject)

        references = list(email.references)
        if email.in_reply_to and email.in_reply_to not in references:
            references.append(email.in_reply_to)

        normalized = NormalizedMessage(
            thread_id=thread_id_for(email),
            message_id=email.message_id,
            sender=email.sender,
            sender_name=email.sender_name,
            subject=email.subject,
            body=body,
            intent=match.intent,
            confidence=match.confidence,
            urgent=urgent,
            has_attachments=email.has_attachments,
            references=references,
        )
        logger.info(
            "Message normalized",
            extra={
                "message_id": normalized.message_id,
                "intent": normalized.intent.value,
                "urgent": normalized.urgent,
            },
        )
        return normalized
