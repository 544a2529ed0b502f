from __future__ import annotations

import re

from pydantic import BaseModel, Field

DANGEROUS_PATTERNS = [
    re.compile(r"<\s*script", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"<\s*iframe", re.IGNORECASE),
    re.compile(r"<\s*object", re.IGNORECASE),
    re.compile(r"<\s*embed", re.IGNORECASE),
]

PROMPT_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+.*?instructions?", re.IGNORECASE),
    re.compile(r"forget\s+.*?instructions?", re.IGNORECASE),
    re.compile(r"you\s+are\s+now\s+", re.IGNORECASE),
    re.compile(r"disregard\s+(all|any)\s+", re.IGNORECASE),
    re.compile(r"<\s*\|\s*.*?\s*\|\s*>"),
]

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-:.]+$")

MAX_TEXT_LENGTH = 12000
MAX_IDENTIFIER_LENGTH = 128
MAX_TITLE_LENGTH = 120
MAX_LIMIT_VALUE = 100
MIN_LIMIT_VALUE = 1


class ContentPolicyResult(BaseModel):
    allowed: bool
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def check_content_policy(text: str, max_length: int = MAX_TEXT_LENGTH) -> ContentPolicyResult:
    """Moderate user text before it is persisted or sent upstream.

    Markup that could execute in a client and oversized input are rejected;
    prompt-injection phrasing is only flagged.
    """

    violations: list[str] = []
    warnings: list[str] = []

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(text):
            violations.append("dangerous markup")
            break

    if len(text) > max_length:
        violations.append(f"text longer than {max_length} characters")

    for pattern in PROMPT_INJECTION_PATTERNS:
        if pattern.search(text):
            warnings.append("possible prompt injection")
            break

    return ContentPolicyResult(allowed=not violations, violations=violations, warnings=warnings)


def is_valid_identifier(value: str | None) -> bool:
    if not value or len(value) > MAX_IDENTIFIER_LENGTH:
        return False
    return IDENTIFIER_PATTERN.match(value) is not None


def sanitize_title(title: str) -> str:
    collapsed = " ".join((title or "").split())
    return collapsed[:MAX_TITLE_LENGTH]


def sanitize_limit(limit: int) -> int:
    return max(MIN_LIMIT_VALUE, min(limit, MAX_LIMIT_VALUE))
