"""
Mailbox sources and the inbound listener.

SES receipt rules drop raw MIME objects under an S3 prefix; locally a
directory of ``.eml`` files plays the same role. Either way a processed
message is moved out of the way so the next poll does not see it again.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import ValidationError as ModelValidationError

from models.message import InboundEmail
from repositories.s3_repo import S3Repository
from services.message_service import parse_raw_email
from utils.cache_service import LRUCache
from utils.logging_config import get_logger
from utils.validators import ensure_present

logger = get_logger(__name__)


class MailboxSource(ABC):
    """Supplies inbound messages and records which ones were handled."""

    @abstractmethod
    def fetch_new(self, limit: int = 10) -> Iterator[InboundEmail]:
        """Yield up to ``limit`` unprocessed messages."""

    @abstractmethod
    def mark_processed(self, email: InboundEmail) -> None:
        """Make sure ``email`` is not returned by later fetches."""


class S3MailboxSource(MailboxSource):
    """Reads SES inbound objects from ``prefix`` and moves them to ``processed_prefix``."""

    def __init__(
        self,
        repository: S3Repository,
        prefix: str = "inbound/",
        processed_prefix: str = "processed/",
        failed_prefix: str = "failed/",
    ):
        self.repository = repository
        self.prefix = prefix
        self.processed_prefix = processed_prefix
        self.failed_prefix = failed_prefix

    def _relocate(self, key: str, new_prefix: str) -> None:
        relative = key[len(self.prefix):] if key.startswith(self.prefix) else key
        self.repository.move(key, f"{new_prefix}{relative}")

    def fetch_new(self, limit: int = 10) -> Iterator[InboundEmail]:
        # Materialize keys first; moving objects while paginating skips entries.
        keys = list(self.repository.list_keys(self.prefix, limit=limit))
        for key in keys:
            try:
                yield parse_raw_email(self.repository.read_bytes(key), source_key=key)
            except (ModelValidationError, ValueError, LookupError) as exc:
                logger.error(
                    "Unparseable inbound object moved aside",
                    extra={"key": key, "error": str(exc)},
                )
                self._relocate(key, self.failed_prefix)

    def mark_processed(self, email: InboundEmail) -> None:
        if email.source_key:
            self._relocate(email.source_key, self.processed_prefix)


class DirectoryMailboxSource(MailboxSource):
    """Treats every ``*.eml`` file in a directory as an unread message."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def fetch_new(self, limit: int = 10) -> Iterator[InboundEmail]:
        if not self.directory.exists():
            logger.warning("Mailbox directory missing", extra={"path": str(self.directory)})
            return
        for path in sorted(self.directory.glob("*.eml"))[:limit]:
            try:
                yield parse_raw_email(path.read_bytes(), source_key=str(path))
            except (ModelValidationError, ValueError, LookupError) as exc:
                logger.error(
                    "Unparseable email file moved aside",
                    extra={"path": str(path), "error": str(exc)},
                )
                path.rename(path.with_suffix(".failed"))

    def mark_processed(self, email: InboundEmail) -> None:
        if email.source_key:
            path = Path(email.source_key)
            if path.exists():
                path.rename(path.with_suffix(".done"))


class InboundListener:
    """Polls a source and emits each new message once per warm process."""

    def __init__(self, source: MailboxSource, seen: Optional[LRUCache] = None):
        self.source = source
        self.seen = seen or LRUCache(max_size=500, ttl_seconds=3600)

    def poll(self, limit: int = 10) -> List[InboundEmail]:
        fresh: List[InboundEmail] = []
        for email in self.source.fetch_new(limit):
            if email.message_id in self.seen:
                logger.info("Duplicate message skipped", extra={"message_id": email.message_id})
                self.source.mark_processed(email)
                continue
            fresh.append(email)
        logger.info("Mailbox polled", extra={"new_messages": len(fresh)})
        return fresh

    def acknowledge(self, email: InboundEmail) -> None:
        self.seen.set(email.message_id, True)
        self.source.mark_processed(email)


def build_mailbox_source(settings) -> MailboxSource:
    """Pick the mailbox backend named by ``MAILBOX_BACKEND``."""
    if settings.mailbox_backend == "directory":
        return DirectoryMailboxSource(Path(settings.mailbox_dir))
    if settings.mailbox_backend == "s3":
        ensure_present(settings.mailbox_bucket, "MAILBOX_BUCKET")
        return S3MailboxSource(
            S3Repository(settings.mailbox_bucket),
            prefix=settings.mailbox_prefix,
            processed_prefix=settings.processed_prefix,
        )
    raise ValueError(f"Unknown mailbox backend: {settings.mailbox_backend}")
