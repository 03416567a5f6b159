"""Sanitize eligible sessions and upload them to the backend in batches.

A sync run checks authentication, picks a lower time bound (the server's
newest session, or the locally recorded per-project sync time when the
server cannot be asked), reads every source, keeps eligible sessions,
sanitizes them and uploads fixed-size batches one after another. A
cancellation event is checked before each batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..core import SourceSession
from ..errors import ApiError, SyncCancelled
from ..provider import ReadError, SessionSource
from .api_client import BatchUploadResult, DevarkApiClient
from .auth import TokenStore
from .sanitizer import to_sanitized_session
from .state import SyncStateStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
MIN_DURATION_SECONDS = 4 * 60
SANITIZE_PROGRESS_EVERY = 10
ESTIMATED_KB_PER_SESSION = 5

NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
TOKEN_INVALID = "TOKEN_INVALID"
UPLOAD_FAILED = "UPLOAD_FAILED"
CANCELLED = "CANCELLED"

PHASE_SANITIZING = "sanitizing"
PHASE_UPLOADING = "uploading"
PHASE_COMPLETE = "complete"
PHASE_CANCELLED = "cancelled"
PHASE_ERROR = "error"


@dataclass
class SyncError:
    message: str
    code: str
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"message": self.message, "code": self.code}
        if self.session_id:
            data["sessionId"] = self.session_id
        return data


@dataclass
class SyncProgress:
    phase: str
    message: str
    current: int
    total: int
    current_batch: Optional[int] = None
    total_batches: Optional[int] = None
    size_kb: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "message": self.message,
            "current": self.current,
            "total": self.total,
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "sizeKB": self.size_kb,
        }


@dataclass
class SyncResult:
    success: bool
    sessions_uploaded: int = 0
    sessions_failed: int = 0
    sessions_skipped: int = 0
    projects_synced: list[str] = field(default_factory=list)
    errors: list[SyncError] = field(default_factory=list)
    batches: list[BatchUploadResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "sessionsUploaded": self.sessions_uploaded,
            "sessionsFailed": self.sessions_failed,
            "sessionsSkipped": self.sessions_skipped,
            "projectsSynced": list(self.projects_synced),
            "errors": [e.to_dict() for e in self.errors],
        }


ProgressCallback = Callable[[SyncProgress], None]


def is_eligible(session: SourceSession) -> bool:
    """At least one actual user prompt and four minutes of active time."""
    return session.duration >= MIN_DURATION_SECONDS and bool(session.user_prompts)


def filter_eligible_sessions(sessions: list[SourceSession]) -> list[SourceSession]:
    return [s for s in sessions if is_eligible(s)]


def read_error_to_sync_error(error: ReadError) -> SyncError:
    return SyncError(message=error.error, code=error.code, session_id=error.path)


def batched(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class SyncService:
    """One sync at a time per instance; callers do not overlap runs."""

    def __init__(
        self,
        sources: list[SessionSource],
        api_client: DevarkApiClient | None = None,
        token_store: TokenStore | None = None,
        state: SyncStateStore | None = None,
        batch_size: int = BATCH_SIZE,
    ):
        self.sources = sources
        self.token_store = token_store or TokenStore()
        self.api_client = api_client or DevarkApiClient(token=self.token_store.get())
        self.state = state or SyncStateStore()
        self.batch_size = batch_size

    async def sync(
        self,
        force: bool = False,
        since: datetime | None = None,
        project_path: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> SyncResult:
        report = on_progress or (lambda progress: None)

        token = self.token_store.get()
        if not token:
            return SyncResult(success=False, errors=[SyncError("Not authenticated", NOT_AUTHENTICATED)])
        self.api_client.token = token
        verification = await self.api_client.verify_token()
        if not verification.valid:
            return SyncResult(success=False, errors=[SyncError("Token is invalid", TOKEN_INVALID)])

        use_local_bound = False
        if not force and since is None:
            try:
                since = (await self.api_client.get_last_session()).timestamp
            except ApiError as e:
                logger.warning("Cannot get last session from server, using local sync state: %s", e)
                use_local_bound = True

        sessions, skipped, errors = self._read_all(since, project_path)
        if use_local_bound:
            before = len(sessions)
            sessions = [s for s in sessions if not self._already_synced(s)]
            skipped += before - len(sessions)

        result = SyncResult(success=False, sessions_skipped=skipped, errors=errors)
        if not sessions:
            report(SyncProgress(PHASE_COMPLETE, "No new sessions to sync", 0, 0))
            result.success = True
            return result

        try:
            await self._upload(sessions, result, report, cancel)
        except SyncCancelled:
            uploaded = result.sessions_uploaded
            report(SyncProgress(PHASE_CANCELLED, f"Sync cancelled. {uploaded} sessions uploaded.", uploaded, len(sessions)))
            result.errors.append(SyncError("Sync cancelled by user", CANCELLED))
        return result

    def get_sync_status(self) -> dict:
        """Counts for the status view, computed without uploading anything."""
        sessions = []
        for source in self.sources:
            if source.is_available():
                sessions.extend(source.read_sessions().sessions)
        eligible = filter_eligible_sessions(sessions)
        last_synced = self.state.get_global_last_sync()
        pending = [s for s in eligible if last_synced is None or s.start_time > last_synced]
        return {
            "localSessions": len(eligible),
            "syncedSessions": self.state.get_total_uploaded(),
            "pendingUploads": len(pending),
            "lastSynced": last_synced.isoformat() if last_synced else None,
            "lastError": self.state.get_last_error(),
        }

    # ── Private helpers ──────────────────────────────────────────────

    def _read_all(
        self, since: datetime | None, project_path: str | None
    ) -> tuple[list[SourceSession], int, list[SyncError]]:
        sessions: list[SourceSession] = []
        errors: list[SyncError] = []
        skipped = 0
        for source in self.sources:
            if not source.is_available():
                continue
            result = source.read_sessions(since=since, project_path=project_path)
            errors.extend(read_error_to_sync_error(e) for e in result.errors)
            eligible = filter_eligible_sessions(result.sessions)
            skipped += len(result.sessions) - len(eligible)
            sessions.extend(eligible)
            logger.info("%s: %d eligible of %d sessions", source.name, len(eligible), len(result.sessions))
        return sessions, skipped, errors

    def _already_synced(self, session: SourceSession) -> bool:
        last_sync = self.state.get_last_sync_time(session.project_path)
        return last_sync is not None and session.start_time <= last_sync

    async def _upload(
        self,
        sessions: list[SourceSession],
        result: SyncResult,
        report: ProgressCallback,
        cancel: asyncio.Event | None,
    ) -> None:
        """Upload in order, filling ``result`` as batches succeed.

        Raises SyncCancelled at a batch boundary once ``cancel`` is set.
        """
        total = len(sessions)
        sanitized = []
        for i, session in enumerate(sessions, 1):
            sanitized.append(to_sanitized_session(session))
            if i % SANITIZE_PROGRESS_EVERY == 0 or i == total:
                report(SyncProgress(
                    PHASE_SANITIZING,
                    f"Sanitizing sessions ({i}/{total})...",
                    i,
                    total,
                    size_kb=i * ESTIMATED_KB_PER_SESSION,
                ))

        session_batches = batched(sessions, self.batch_size)
        record_batches = batched(sanitized, self.batch_size)
        total_batches = len(record_batches)

        for index, (batch_sessions, records) in enumerate(zip(session_batches, record_batches), 1):
            if cancel is not None and cancel.is_set():
                raise SyncCancelled(f"Cancelled before batch {index}")

            report(SyncProgress(
                PHASE_UPLOADING, f"Uploading batch {index} of {total_batches}...", result.sessions_uploaded, total,
                current_batch=index, total_batches=total_batches,
            ))
            try:
                batch_result = await self.api_client.upload_batch(records, index, total_batches, total)
                if not batch_result.success:
                    raise ApiError(f"Batch {index} was rejected by the server")
            except ApiError as e:
                message = str(e)
                logger.error("Sync failed on batch %d/%d: %s", index, total_batches, message)
                self.state.record_error(message, UPLOAD_FAILED)
                result.errors.append(SyncError(message, UPLOAD_FAILED))
                result.sessions_failed = total - result.sessions_uploaded
                report(SyncProgress(
                    PHASE_ERROR, f"Sync failed: {message}", result.sessions_uploaded, total,
                    current_batch=index, total_batches=total_batches,
                ))
                return

            result.batches.append(batch_result)
            result.sessions_uploaded += batch_result.sessions_processed
            self._record_projects(batch_sessions, result.projects_synced)
            report(SyncProgress(
                PHASE_UPLOADING, f"Uploaded {result.sessions_uploaded} of {total} sessions...",
                result.sessions_uploaded, total, current_batch=index, total_batches=total_batches,
            ))

        result.success = True
        report(SyncProgress(
            PHASE_COMPLETE, f"Successfully synced {result.sessions_uploaded} sessions!", result.sessions_uploaded, total
        ))
        logger.info("Synced %d sessions in %d batches", result.sessions_uploaded, total_batches)

    def _record_projects(self, batch_sessions: list[SourceSession], projects_synced: list[str]) -> None:
        """Record the sync for every project in a batch the server accepted."""
        by_project: dict[str, list[SourceSession]] = {}
        for session in batch_sessions:
            by_project.setdefault(session.project_path, []).append(session)
        for project_path, project_sessions in by_project.items():
            self.state.record_sync(project_path, len(project_sessions), project_sessions[-1].id)
            if project_path not in projects_synced:
                projects_synced.append(project_path)
