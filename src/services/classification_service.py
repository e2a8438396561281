"""
Keyword-based message analysis.

Intent is decided by a first-match scan over ``INTENT_PATTERNS`` in
declaration order; urgency and escalation are plain keyword checks. Nothing
here keeps state between calls.
"""

from __future__ import annotations

import re
from typing import Dict, List, NamedTuple, Sequence, Tuple

from models.message import Intent
from utils.text import split_sentences


def _compile(*patterns: str) -> Tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


INTENT_PATTERNS: Tuple[Tuple[Intent, Tuple[re.Pattern, ...]], ...] = (
    (
        Intent.PRICING_INQUIRY,
        _compile(
            r"\bpric(e|es|ed|ing)\b",
            r"\bcosts?\b",
            r"\bquotes?\b",
            r"\bhow much\b",
            r"\bbudget\b",
            r"\bdiscounts?\b",
            r"\bfees?\b",
        ),
    ),
    (
        Intent.SUPPORT_REQUEST,
        _compile(
            r"\bhelp\b",
            r"\bissues?\b",
            r"\bproblems?\b",
            r"\berrors?\b",
            r"\bbugs?\b",
            r"\bbroken\b",
            r"\bnot working\b",
            r"\b(is|are|went|goes) down\b",
            r"\bcrash(es|ed|ing)?\b",
            r"\boutage\b",
            r"\bcan'?t (log ?in|access|connect)\b",
            r"\bsupport\b",
        ),
    ),
    (
        Intent.PURCHASE_INTENT,
        _compile(
            r"\bbuy(ing)?\b",
            r"\bpurchas(e|ing)\b",
            r"\bsign(ing)? up\b",
            r"\bsubscribe\b",
            r"\bready to (start|proceed|move forward|go ahead)\b",
            r"\bcontract\b",
            r"\bplace an order\b",
        ),
    ),
    (
        Intent.INFORMATION_REQUEST,
        _compile(
            r"\binformation\b",
            r"\binfo\b",
            r"\bdetails\b",
            r"\blearn more\b",
            r"\btell me (more|about)\b",
            r"\bfeatures?\b",
            r"\bbrochure\b",
            r"\bspecs?\b",
            r"\bdocumentation\b",
        ),
    ),
    (
        Intent.DEMO_REQUEST,
        _compile(
            r"\bdemo\b",
            r"\btrial\b",
            r"\bwalk ?through\b",
            r"\bwalk me through\b",
            r"\bshow me\b",
            r"\bpresentation\b",
        ),
    ),
)

URGENCY_KEYWORDS: Tuple[str, ...] = (
    "urgent",
    "asap",
    "as soon as possible",
    "immediately",
    "emergency",
    "critical",
    "right away",
    "time sensitive",
    "time-sensitive",
    "deadline today",
)

HUMAN_REQUEST_PHRASES: Tuple[str, ...] = (
    "speak to a human",
    "talk to a human",
    "speak to a person",
    "talk to a person",
    "real person",
    "speak to someone",
    "talk to someone",
    "human agent",
    "manager",
    "supervisor",
    "representative",
    "call me",
)

HIGH_CONVERSION_THRESHOLD = 0.7

POSITIVE_WORDS = frozenset(
    "thanks thank great love excellent happy appreciate perfect awesome excited glad".split()
)
NEGATIVE_WORDS = frozenset(
    "angry frustrated disappointed terrible awful unacceptable annoyed worst cancel refund "
    "broken useless ridiculous".split()
)

_BUDGET_PATTERN = re.compile(
    r"(\bbudget\b|[$€£]\s?\d|\b\d[\d,.]*\s?(k|usd|eur|gbp)\b|\bper (month|year|seat|user)\b)",
    re.IGNORECASE,
)
_TIMELINE_PATTERN = re.compile(
    r"\b(timeline|deadline|next (week|month|quarter|year)|this (week|month|quarter)|"
    r"q[1-4]|end of (the )?(week|month|quarter|year)|within \d+ (days|weeks|months)|"
    r"go[- ]live|launch)\b",
    re.IGNORECASE,
)
_WORD = re.compile(r"[a-z']+")


class IntentMatch(NamedTuple):
    intent: Intent
    confidence: float


def classify_intent(body: str) -> IntentMatch:
    """Return the first intent whose patterns match, with a hit-count confidence."""
    text = body or ""
    for intent, patterns in INTENT_PATTERNS:
        hits = sum(1 for pattern in patterns if pattern.search(text))
        if hits:
            return IntentMatch(intent, round(min(0.95, 0.6 + 0.1 * hits), 2))
    return IntentMatch(Intent.GENERAL_INQUIRY, 0.3)


def detect_urgency(body: str, subject: str = "") -> bool:
    """Case-insensitive substring match on body and subject together."""
    haystack = f"{body or ''} {subject or ''}".lower()
    return any(keyword in haystack for keyword in URGENCY_KEYWORDS)


def requests_human(body: str) -> bool:
    lowered = (body or "").lower()
    return any(phrase in lowered for phrase in HUMAN_REQUEST_PHRASES)


def escalation_reasons(
    urgent: bool,
    intent: Intent,
    conversion_probability: float,
    body: str = "",
) -> List[str]:
    """Every rule that fires; an empty list means the reply can go out automatically."""
    reasons: List[str] = []
    if urgent:
        reasons.append("urgent")
    if intent == Intent.SUPPORT_REQUEST:
        reasons.append("support_request")
    if requests_human(body):
        reasons.append("human_requested")
    if conversion_probability > HIGH_CONVERSION_THRESHOLD and intent == Intent.PURCHASE_INTENT:
        reasons.append("high_value_purchase")
    return reasons


def should_escalate(
    urgent: bool,
    intent: Intent,
    conversion_probability: float,
    body: str = "",
) -> bool:
    return bool(escalation_reasons(urgent, intent, conversion_probability, body))


def score_sentiment(text: str) -> float:
    """Share of positive words among sentiment-bearing words; 0.5 when there are none."""
    words = _WORD.findall((text or "").lower())
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    if positive + negative == 0:
        return 0.5
    return round(positive / (positive + negative), 2)


def extract_qualification_notes(text: str) -> Dict[str, List[str]]:
    """Sentences that mention budget or timeline, keyed by note type."""
    notes: Dict[str, List[str]] = {"budget": [], "timeline": []}
    for sentence in split_sentences(text or ""):
        if _BUDGET_PATTERN.search(sentence):
            notes["budget"].append(sentence)
        if _TIMELINE_PATTERN.search(sentence):
            notes["timeline"].append(sentence)
    return notes


def intent_order() -> Sequence[Intent]:
    """Priority order used by ``classify_intent``, followed by the default."""
    return [intent for intent, _ in INTENT_PATTERNS] + [Intent.GENERAL_INQUIRY]
