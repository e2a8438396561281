"""
Pytest configuration and shared fixtures.

``src/`` goes on sys.path to mirror Lambda, where the asset root is ``src``
and imports look like ``from services import ...``.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from pathlib import Path
from unittest.mock import MagicMock

import boto3
import pytest


def _ensure_paths_on_sys_path() -> None:
    """Add src/ to sys.path if missing."""
    src_root = Path(__file__).resolve().parents[1] / "src"
    src_str = str(src_root)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


_ensure_paths_on_sys_path()

# Offline-friendly defaults so tests never need AWS access.
os.environ.setdefault("AWS_REGION", "eu-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_SESSION_TOKEN", "test")
os.environ.setdefault("ENVIRONMENT", "dev")

boto3.setup_default_session(region_name="eu-west-2")

from config.settings import Settings  # noqa: E402
from models.pipeline import CompletionResult, SendResult  # noqa: E402
from repositories.sql_repo import SqlRepository, get_db_engine  # noqa: E402


class SteppingClock:
    """Deterministic clock that advances one minute per call."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        record_backend="sql",
        database_url="sqlite://",
        mailbox_backend="directory",
        sender_address="support@example.com",
        sender_name="Acme Support",
        escalation_address="humans@example.com",
        company_name="Acme",
    )


@pytest.fixture
def sql_store(tmp_path) -> SqlRepository:
    return SqlRepository(get_db_engine(f"sqlite:///{tmp_path / 'records.db'}"))


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def completion() -> MagicMock:
    service = MagicMock()
    service.complete.return_value = CompletionResult(
        text="Our enterprise plan is billed annually and includes priority onboarding.",
        model_id="test-model",
        latency_ms=12,
    )
    return service


@pytest.fixture
def mail() -> MagicMock:
    service = MagicMock()
    service.send.return_value = SendResult(success=True, message_id="<sent-1@example.com>")
    return service


@pytest.fixture
def reporter() -> MagicMock:
    return MagicMock()


@pytest.fixture
def raw_email_factory():
    """Build RFC 5322 bytes the way a mail server would store them."""

    def _build(
        body="What is the price for your enterprise plan?",
        subject="Pricing question",
        sender="Jane Doe <jane@example.org>",
        message_id="<msg-1@example.org>",
        html=None,
        in_reply_to=None,
        references=None,
        reply_to=None,
        attachment=None,
    ) -> bytes:
        message = EmailMessage()
        message["From"] = sender
        message["To"] = "support@example.com"
        message["Subject"] = subject
        message["Date"] = "Fri, 01 Mar 2024 08:30:00 +0000"
        if message_id:
            message["Message-ID"] = message_id
        if in_reply_to:
            message["In-Reply-To"] = in_reply_to
        if references:
            message["References"] = references
        if reply_to:
            message["Reply-To"] = reply_to
        if body is not None:
            message.set_content(body)
        if html is not None:
            if body is None:
                message.set_content(html, subtype="html")
            else:
                message.add_alternative(html, subtype="html")
        if attachment is not None:
            message.add_attachment(attachment, maintype="application", subtype="pdf", filename="quote.pdf")
        return message.as_bytes()

    return _build
