"""
PII redaction for ingested email bodies.

Patterns run in a fixed order and every match is replaced with a fixed
marker. The sender's own address is left intact so replies stay threaded.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

REDACTED = "[REDACTED]"
EMAIL_REDACTED = "[EMAIL_REDACTED]"

CREDIT_CARD_PATTERN = re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")
SSN_PATTERN = re.compile(r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b")
PHONE_PATTERN = re.compile(r"\b\d{3}[-\s]?\d{3}[-\s]?\d{4}\b")
EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
IPV4_PATTERN = re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b")

# Application order matters: card numbers must go before the shorter digit groups.
PII_PATTERNS: List[Tuple["re.Pattern[str]", str]] = [
    (CREDIT_CARD_PATTERN, REDACTED),
    (SSN_PATTERN, REDACTED),
    (PHONE_PATTERN, REDACTED),
    (EMAIL_PATTERN, EMAIL_REDACTED),
    (IPV4_PATTERN, REDACTED),
]


def _redact_segment(text: str) -> str:
    for pattern, marker in PII_PATTERNS:
        text = pattern.sub(marker, text)
    return text


def redact_pii(text: str, sender_email: Optional[str] = None) -> str:
    """
    Mask card, SSN and phone numbers, email addresses and IPv4 addresses.

    Occurrences of ``sender_email`` (case-insensitive, whole address only)
    are carved out before any pattern runs, so digits inside the sender's
    address are never touched.
    """
    text = text or ""
    sender = (sender_email or "").strip().lower()
    if not sender:
        return _redact_segment(text)

    pieces: List[str] = []
    last = 0
    for match in EMAIL_PATTERN.finditer(text):
        if match.group(0).lower() != sender:
            continue
        pieces.append(_redact_segment(text[last : match.start()]))
        pieces.append(match.group(0))
        last = match.end()
    pieces.append(_redact_segment(text[last:]))
    return "".join(pieces)
