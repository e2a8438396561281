"""Outbound mail through Amazon SES using raw MIME so threading headers survive."""

from __future__ import annotations

from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import Settings
from models.pipeline import OutboundEmail, SendResult
from utils.logging_config import get_logger

logger = get_logger(__name__)


def build_mime(email: OutboundEmail, sender: str, sender_name: str = "") -> EmailMessage:
    """Plain-text message with an optional HTML alternative and reply headers."""
    message = EmailMessage()
    message["From"] = formataddr((sender_name, sender)) if sender_name else sender
    message["To"] = email.recipient
    message["Subject"] = email.subject
    message["Message-ID"] = make_msgid(domain=sender.split("@", 1)[-1])
    if email.in_reply_to:
        message["In-Reply-To"] = email.in_reply_to
    if email.references:
        message["References"] = " ".join(email.references)
    message.set_content(email.text_body)
    if email.html_body:
        message.add_alternative(email.html_body, subtype="html")
    return message


class MailService:
    """SES mail transport: ``send`` reports success or failure, it does not raise."""

    def __init__(self, settings: Settings, client=None):
        self.sender_address = settings.sender_address
        self.sender_name = settings.sender_name
        self.client = client or boto3.client(
            "ses", region_name=settings.aws_region, config=settings.boto_config()
        )

    def send(self, email: OutboundEmail) -> SendResult:
        if not self.sender_address:
            logger.error("SENDER_ADDRESS is not configured; message not sent")
            return SendResult(success=False, error="sender address not configured")
        if not email.recipient:
            return SendResult(success=False, error="recipient missing")

        mime = build_mime(email, self.sender_address, self.sender_name)
        try:
            response = self.client.send_raw_email(
                Source=self.sender_address,
                Destinations=[email.recipient],
                RawMessage={"Data": mime.as_bytes()},
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(
                "Email send failed",
                extra={"recipient": email.recipient, "error": str(exc)},
            )
            return SendResult(success=False, error=str(exc))

        logger.info(
            "Email sent",
            extra={"recipient": email.recipient, "ses_message_id": response.get("MessageId")},
        )
        return SendResult(success=True, message_id=str(mime["Message-ID"]))
