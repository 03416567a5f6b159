"""HTTP client for the devark sync backend."""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from ..config import get_api_base_url
from ..core import parse_timestamp
from ..errors import ApiError

logger = logging.getLogger(__name__)

SOURCE_HEADER = "x-devark-source"
SOURCE_NAME = "ide_extension"
DEFAULT_TIMEOUT = 30.0

VERIFY_PATH = "/api/auth/cli/verify"
LAST_SESSION_PATH = "/api/sessions/last"
UPLOAD_PATH = "/cli/sessions"


@dataclass
class TokenVerification:
    valid: bool
    user_id: Optional[str] = None
    user: Optional[dict] = None


@dataclass
class LastSession:
    timestamp: Optional[datetime] = None
    session_id: Optional[str] = None


@dataclass
class BatchUploadResult:
    success: bool
    sessions_processed: int = 0
    created: int = 0
    duplicates: int = 0

    @classmethod
    def from_dict(cls, data: dict, batch_size: int) -> "BatchUploadResult":
        processed = data.get("sessionsProcessed")
        return cls(
            success=data.get("success", True) is not False,
            sessions_processed=int(processed) if isinstance(processed, (int, float)) else batch_size,
            created=int(data.get("created") or 0),
            duplicates=int(data.get("duplicates") or 0),
        )


def checksum(sessions: list[dict]) -> str:
    """sha256 of the batch's JSON, sent so the backend can detect truncation."""
    payload = json.dumps(sessions, separators=(",", ":"), sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DevarkApiClient:
    """Thin async wrapper over the backend endpoints the sync pipeline needs."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = (base_url or get_api_base_url()).rstrip("/")
        self.token = token
        self._transport = transport
        self._timeout = timeout

    async def verify_token(self) -> TokenVerification:
        """Check the token; any failure counts as invalid."""
        try:
            data = await self._request("GET", VERIFY_PATH)
        except ApiError as e:
            logger.info("Token verification failed: %s", e)
            return TokenVerification(valid=False)
        user = data.get("user") if isinstance(data, dict) else None
        valid = data.get("valid") is True or user is not None
        return TokenVerification(valid=valid, user_id=(user or {}).get("id"), user=user)

    async def get_last_session(self) -> LastSession:
        """Return the newest session the backend has; a 404 means none yet."""
        try:
            data = await self._request("GET", LAST_SESSION_PATH)
        except ApiError as e:
            if e.status == 404:
                return LastSession()
            raise
        return LastSession(
            timestamp=parse_timestamp(data.get("lastSessionTimestamp")),
            session_id=data.get("lastSessionId"),
        )

    async def upload_batch(
        self, sessions: list[dict], batch_number: int, total_batches: int, total_sessions: int
    ) -> BatchUploadResult:
        """POST one batch of sanitized sessions."""
        payload = {
            "sessions": sessions,
            "checksum": checksum(sessions),
            "totalSessions": total_sessions,
            "batchNumber": batch_number,
            "totalBatches": total_batches,
        }
        logger.debug("Uploading batch %d/%d (%d sessions)", batch_number, total_batches, len(sessions))
        data = await self._request("POST", UPLOAD_PATH, json=payload, headers={SOURCE_HEADER: SOURCE_NAME})
        return BatchUploadResult.from_dict(data if isinstance(data, dict) else {}, len(sessions))

    # ── Private helpers ──────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=self._timeout, transport=self._transport
        )

    async def _request(self, method: str, path: str, **kwargs):
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(f"Network error calling {path}: {e}") from e

        if resp.status_code >= 400:
            raise ApiError(f"{method} {path} returned {resp.status_code}", status=resp.status_code)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {path}: {e}", status=resp.status_code) from e
