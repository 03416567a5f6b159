"""Prompt validation and sanitization before any provider call."""

import re
from dataclasses import dataclass, field
from typing import Optional

MIN_LENGTH = 3
MAX_LENGTH = 10000

SUSPICIOUS_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"you\s+are\s+now", re.IGNORECASE),
    re.compile(r"system\s*prompt", re.IGNORECASE),
]


@dataclass
class ValidationResult:
    valid: bool
    sanitized: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def sanitize(prompt: str) -> str:
    """Strip NUL bytes, collapse whitespace, trim and cap the length."""
    return re.sub(r"\s+", " ", prompt.replace("\0", "")).strip()[:MAX_LENGTH]


def validate(prompt: str | None) -> ValidationResult:
    if not prompt or not prompt.strip():
        return ValidationResult(valid=False, errors=["Prompt cannot be empty"])

    errors = []
    warnings = []
    if len(prompt) < MIN_LENGTH:
        errors.append(f"Prompt must be at least {MIN_LENGTH} characters")
    if len(prompt) > MAX_LENGTH:
        errors.append(f"Prompt exceeds maximum length of {MAX_LENGTH} characters")
    if any(p.search(prompt) for p in SUSPICIOUS_PATTERNS):
        warnings.append("Prompt contains suspicious content")

    return ValidationResult(
        valid=not errors,
        sanitized=sanitize(prompt),
        errors=errors,
        warnings=warnings,
    )
