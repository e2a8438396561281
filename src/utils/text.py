"""Plain-text helpers for email bodies."""

from __future__ import annotations

import html
import re

_QUOTE_HEADER = re.compile(
    r"^\s*(On .+wrote:|-{2,}\s*Original Message\s*-{2,}|_{5,})\s*$",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")


def html_to_text(raw: str) -> str:
    """Convert HTML content into normalized plain text."""
    with_breaks = re.sub(r"(?is)<(script|style)[^>]*>.*?</\1>", " ", raw)
    with_breaks = re.sub(r"(?i)<\s*br\s*/?>", "\n", with_breaks)
    with_breaks = re.sub(r"(?i)</(p|div|li|tr|h[1-6])>", "\n", with_breaks)
    text = re.sub(r"<[^>]+>", " ", with_breaks)
    text = html.unescape(text)
    lines = [" ".join(line.split()) for line in text.splitlines() if line.strip()]
    return "\n".join(lines)


def strip_quoted_reply(body: str) -> str:
    """Drop quoted history so only the newest message is classified."""
    kept = []
    for line in body.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if _QUOTE_HEADER.match(line):
            break
        if line.lstrip().startswith(">"):
            continue
        kept.append(line.rstrip())
    return "\n".join(kept).strip()


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s and s.strip()]


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."
