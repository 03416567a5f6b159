"""Redact secrets and personal data from session messages before upload.

Patterns run in a fixed order (database URLs, credentials, password
fields, home paths, emails, IP addresses, env-var references, then
sensitive URL query parameters). Numbered placeholders share one counter
set across all messages of a session, so ``[PATH_2]`` means the same kind
of thing everywhere in one upload record.
"""

import json
import re
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..core import SourceSession

DATABASE_URL_PATTERNS = [
    re.compile(r"(?:postgres|postgresql|mysql|mongodb|redis)://[^\s\"'`<>]+"),
]

# (pattern, keeps_prefix): when keeps_prefix is set, group 1 is left in place
# and only group 2 is replaced.
CREDENTIAL_PATTERNS = [
    (re.compile(r"\bsk-ant-[a-zA-Z0-9-]{6,}"), False),
    (re.compile(r"\bsk[-_](?:test|live)[-_][a-zA-Z0-9_-]{10,}"), False),
    (re.compile(r"\bpk[-_](?:test|live)[-_][a-zA-Z0-9_-]{10,}"), False),
    (re.compile(r"\brk_(?:live|test)_[a-zA-Z0-9_-]{10,}"), False),
    (re.compile(r"\bsk-[a-zA-Z0-9]{6,}"), False),
    (re.compile(r"\bAKIA[A-Z0-9]{16}\b"), False),
    (re.compile(r"(AWS_SECRET_ACCESS_KEY=|aws_secret_access_key=)([A-Za-z0-9+/=]{40})"), True),
    (re.compile(r"(API_KEY=|api_key=|apikey=|APIKEY=)([a-zA-Z0-9_-]{16,})", re.IGNORECASE), True),
    (re.compile(r"(?<=Bearer\s)[a-zA-Z0-9._-]{20,}"), False),
    (re.compile(r"\bgh[psohr]_[a-zA-Z0-9]{36,}"), False),
    (re.compile(r"\bxox[bp]-[0-9]+-[0-9]+-[a-zA-Z0-9]+"), False),
    (re.compile(r"\bnpm_[a-zA-Z0-9]{36,}"), False),
    (re.compile(r"\bSG\.[a-zA-Z0-9_-]{20,}\.[a-zA-Z0-9_-]{20,}"), False),
    (re.compile(r"\beyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"), False),
    (re.compile(r"(secret=|token=|password=|key=)([a-f0-9]{32,})", re.IGNORECASE), True),
    (re.compile(r"(://[^:\s/@]+:)([^@\s]+)(?=@)"), True),
]

PASSWORD_PATTERN = re.compile(r"(['\"])password\1\s*:\s*(['\"])[^'\"]+\2", re.IGNORECASE)

PATH_PATTERNS = [
    re.compile(r"/(?:Users|home)/[a-zA-Z0-9_.-]+(?:/[^\s\"'`]+)?"),
    re.compile(r"[A-Z]:\\Users\\[a-zA-Z0-9_.-]+(?:\\[^\s\"'`]+)?", re.IGNORECASE),
]

EMAIL_PATTERN = re.compile(r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b")

IP_PATTERN = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")

ENV_VAR_PATTERNS = [
    re.compile(r"\$\{[A-Z_][A-Z0-9_]*\}"),
    re.compile(r"\$[A-Z_][A-Z0-9_]+\b"),
]

URL_PATTERN = re.compile(r"https?://[^\s\"'`<>]+")

SENSITIVE_URL_PARAMS = ("token", "key", "secret", "password", "auth", "api_key", "apikey", "access_token")


@dataclass
class RedactionCounts:
    credentials: int = 0
    paths: int = 0
    emails: int = 0
    urls: int = 0
    ips: int = 0
    env_vars: int = 0
    database_urls: int = 0

    def to_dict(self) -> dict:
        return {
            "credentials": self.credentials,
            "paths": self.paths,
            "emails": self.emails,
            "urls": self.urls,
            "ips": self.ips,
            "envVars": self.env_vars,
            "databaseUrls": self.database_urls,
        }

    def to_metadata(self) -> dict:
        return {
            "credentialsRedacted": self.credentials,
            "pathsRedacted": self.paths,
            "emailsRedacted": self.emails,
            "urlsRedacted": self.urls,
            "ipAddressesRedacted": self.ips,
            "envVarsRedacted": self.env_vars,
            "databaseUrlsRedacted": self.database_urls,
        }


class Sanitizer:
    """Applies the redaction passes while keeping placeholder counters."""

    def __init__(self):
        self.counts = RedactionCounts()

    def sanitize(self, text: str) -> str:
        for pattern in DATABASE_URL_PATTERNS:
            text = pattern.sub(self._database_url, text)
        for pattern, keeps_prefix in CREDENTIAL_PATTERNS:
            text = pattern.sub(self._prefixed_credential if keeps_prefix else self._credential, text)
        text = PASSWORD_PATTERN.sub(lambda m: f'{m.group(1)}password{m.group(1)}: "[REDACTED_PASSWORD]"', text)
        for pattern in PATH_PATTERNS:
            text = pattern.sub(self._path, text)
        text = EMAIL_PATTERN.sub(self._email, text)
        text = IP_PATTERN.sub(self._ip, text)
        for pattern in ENV_VAR_PATTERNS:
            text = pattern.sub(self._env_var, text)
        return URL_PATTERN.sub(self._url_params, text)

    # ── Replacements ─────────────────────────────────────────────────

    def _next_credential(self) -> str:
        self.counts.credentials += 1
        return f"[CREDENTIAL_{self.counts.credentials}]"

    def _credential(self, match: re.Match) -> str:
        return self._next_credential()

    def _prefixed_credential(self, match: re.Match) -> str:
        return match.group(1) + self._next_credential()

    def _database_url(self, match: re.Match) -> str:
        self.counts.database_urls += 1
        return "[DATABASE_URL]"

    def _path(self, match: re.Match) -> str:
        self.counts.paths += 1
        return f"[PATH_{self.counts.paths}]"

    def _email(self, match: re.Match) -> str:
        self.counts.emails += 1
        return f"[EMAIL_{self.counts.emails}]"

    def _ip(self, match: re.Match) -> str:
        self.counts.ips += 1
        return "[IP_ADDRESS]"

    def _env_var(self, match: re.Match) -> str:
        self.counts.env_vars += 1
        return f"[ENV_VAR_{self.counts.env_vars}]"

    def _url_params(self, match: re.Match) -> str:
        url = match.group(0)
        try:
            parts = urlsplit(url)
        except ValueError:
            return url
        if not parts.query:
            return url

        pairs = parse_qsl(parts.query, keep_blank_values=True)
        present = {key for key, _ in pairs}
        replacements = {
            param: self._next_credential()[1:-1] for param in SENSITIVE_URL_PARAMS if param in present
        }
        if not replacements:
            return url

        seen = set()
        redacted = []
        for key, value in pairs:
            if key in replacements:
                if key in seen:
                    continue
                seen.add(key)
                value = replacements[key]
            redacted.append((key, value))
        return urlunsplit(parts._replace(query=urlencode(redacted)))


def sanitize(text: str) -> tuple[str, RedactionCounts]:
    """Sanitize one string with fresh counters."""
    sanitizer = Sanitizer()
    return sanitizer.sanitize(text), sanitizer.counts


def sanitize_messages(messages: list[dict]) -> tuple[list[dict], RedactionCounts]:
    """Sanitize ``{role, content, ...}`` dicts, sharing counters across them."""
    sanitizer = Sanitizer()
    sanitized = []
    for message in messages:
        content = message.get("content") or ""
        sanitized.append({**message, "content": sanitizer.sanitize(content), "originalLength": len(content)})
    return sanitized, sanitizer.counts


def extract_project_name(project_path: str) -> str:
    parts = [p for p in re.split(r"[/\\]", project_path or "") if p]
    return parts[-1] if parts else "unknown"


def to_sanitized_session(session: SourceSession) -> dict:
    """Build the upload record for one session; message text is sanitized."""
    messages, counts = sanitize_messages([m.to_dict() for m in session.messages])
    record = {
        "id": session.id,
        "tool": session.source,
        "timestamp": session.start_time.isoformat(),
        "duration": session.duration,
        "data": {
            "projectName": extract_project_name(session.project_path),
            "messageSummary": json.dumps(messages),
            "messageCount": len(session.messages),
            "metadata": session.metadata or {},
        },
        "sanitizationMetadata": counts.to_metadata(),
    }
    if session.claude_session_id:
        record["claudeSessionId"] = session.claude_session_id
    return record
