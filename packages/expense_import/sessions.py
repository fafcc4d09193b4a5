"""Import session tracking.

A session follows one run end to end through a linear state machine::

    created -> parsing -> processing -> importing -> completed
         \\---------\\-------------\\-----------\\--> failed | cancelled

No backward transitions; ``completed``, ``failed`` and ``cancelled`` are
terminal. Sessions persist in the ``import_sessions`` collection so a host
can list, retry or clean them up later.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from .errors import InvalidSessionTransition
from .logging_setup import get_logger
from .models import ImportProgress, RollbackOutcome
from .resilience import rollback_session
from .store import IMPORT_SESSIONS, DocumentStore

_logger = get_logger("expense_import.sessions")

RETRY_WINDOW = timedelta(hours=24)
DEFAULT_MAX_AGE_DAYS = 30


class SessionState(StrEnum):
    CREATED = "created"
    PARSING = "parsing"
    PROCESSING = "processing"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})
_ABORT = frozenset({SessionState.FAILED, SessionState.CANCELLED})

TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.PARSING}) | _ABORT,
    SessionState.PARSING: frozenset({SessionState.PROCESSING}) | _ABORT,
    SessionState.PROCESSING: frozenset({SessionState.IMPORTING}) | _ABORT,
    SessionState.IMPORTING: frozenset({SessionState.COMPLETED}) | _ABORT,
    SessionState.COMPLETED: frozenset(),
    SessionState.FAILED: frozenset(),
    SessionState.CANCELLED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; stored values are always UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _progress_doc(p: ImportProgress) -> dict[str, Any]:
    return {
        "phase": p.phase,
        "percentage": p.percentage,
        "current": p.current,
        "total": p.total,
        "message": p.message,
    }


@dataclass(frozen=True, slots=True)
class ImportSession:
    id: str
    user_id: str
    state: SessionState
    created_at: datetime
    updated_at: datetime
    couple_id: str | None = None
    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None
    progress: ImportProgress = field(default_factory=lambda: ImportProgress("created", 0))
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    completed_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "couple_id": self.couple_id,
            "state": str(self.state),
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "progress": _progress_doc(self.progress),
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ImportSession:
        p = doc.get("progress") or {}
        return cls(
            id=doc["id"],
            user_id=doc["user_id"],
            couple_id=doc.get("couple_id"),
            state=SessionState(doc["state"]),
            file_name=doc.get("file_name"),
            file_type=doc.get("file_type"),
            file_size=doc.get("file_size"),
            progress=ImportProgress(
                phase=p.get("phase", "created"),
                percentage=int(p.get("percentage", 0)),
                current=int(p.get("current", 0)),
                total=int(p.get("total", 0)),
                message=p.get("message"),
            ),
            result=doc.get("result"),
            error=doc.get("error"),
            created_at=_aware(doc["created_at"]),  # type: ignore[arg-type]
            updated_at=_aware(doc["updated_at"]),  # type: ignore[arg-type]
            completed_at=_aware(doc.get("completed_at")),
        )


@dataclass(frozen=True, slots=True)
class SessionStats:
    total: int
    completed: int
    failed: int
    cancelled: int
    total_imported: int
    average_import_size: int
    most_recent: ImportSession | None = None


class SessionManager:
    """Create and advance :class:`ImportSession` records in a document store."""

    def __init__(
        self, store: DocumentStore, *, clock: Callable[[], datetime] = _utcnow
    ) -> None:
        self.store = store
        self._clock = clock

    # ---- Persistence ----

    def _save(self, session: ImportSession) -> ImportSession:
        self.store.batch_write(IMPORT_SESSIONS, [session.to_document()])
        return session

    def get(self, session_id: str) -> ImportSession | None:
        doc = self.store.get(IMPORT_SESSIONS, session_id)
        return ImportSession.from_document(doc) if doc is not None else None

    def _require(self, session_id: str) -> ImportSession:
        session = self.get(session_id)
        if session is None:
            raise KeyError(f"Import session {session_id} not found")
        return session

    def _new_id(self) -> str:
        millis = int(self._clock().timestamp() * 1000)
        return f"import_{millis}_{uuid.uuid4().hex[:9]}"

    # ---- Lifecycle ----

    def create(
        self,
        user_id: str,
        *,
        couple_id: str | None = None,
        file_name: str | None = None,
        file_type: str | None = None,
        file_size: int | None = None,
    ) -> ImportSession:
        now = self._clock()
        session = ImportSession(
            id=self._new_id(),
            user_id=user_id,
            couple_id=couple_id,
            state=SessionState.CREATED,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            created_at=now,
            updated_at=now,
        )
        _logger.info("session:created id=%s user=%s file=%s", session.id, user_id, file_name)
        return self._save(session)

    def transition(self, session_id: str, target: SessionState, **changes: Any) -> ImportSession:
        current = self._require(session_id)
        if target not in TRANSITIONS[current.state]:
            raise InvalidSessionTransition(
                f"Cannot move session {session_id} from {current.state} to {target}"
            )
        now = self._clock()
        if target.is_terminal:
            changes.setdefault("completed_at", now)
        updated = replace(current, state=target, updated_at=now, **changes)
        _logger.info("session:state id=%s %s->%s", session_id, current.state, target)
        return self._save(updated)

    def start_phase(
        self, session_id: str, phase: SessionState, **changes: Any
    ) -> ImportSession:
        """Enter a working phase (``parsing``, ``processing`` or ``importing``).

        ``changes`` updates other session fields (e.g. ``file_type``) in the same write.
        """

        if phase.is_terminal or phase is SessionState.CREATED:
            raise ValueError(f"{phase} is not a working phase")
        current = self._require(session_id)
        progress = ImportProgress(
            phase=str(phase),
            percentage=current.progress.percentage,
            current=0,
            total=0,
        )
        return self.transition(session_id, phase, progress=progress, **changes)

    def update_progress(self, session_id: str, progress: ImportProgress) -> ImportSession:
        """Record progress; the stored percentage never goes backwards."""

        current = self._require(session_id)
        if current.state.is_terminal:
            raise InvalidSessionTransition(
                f"Session {session_id} is {current.state}; progress is frozen"
            )
        pct = max(current.progress.percentage, min(progress.percentage, 100))
        updated = replace(
            current, progress=replace(progress, percentage=pct), updated_at=self._clock()
        )
        return self._save(updated)

    def complete(self, session_id: str, result: Mapping[str, Any]) -> ImportSession:
        return self.transition(
            session_id,
            SessionState.COMPLETED,
            result=dict(result),
            progress=ImportProgress("completed", 100),
        )

    def fail(
        self,
        session_id: str,
        error: Mapping[str, Any] | str,
        *,
        rollback: bool = False,
    ) -> ImportSession:
        """Mark the session failed; with ``rollback`` also delete its expenses."""

        err = {"message": error} if isinstance(error, str) else dict(error)
        if rollback:
            err["rollback"] = _outcome_doc(rollback_session(self.store, session_id))
        _logger.warning("session:failed id=%s error=%s", session_id, err.get("message"))
        current = self._require(session_id)
        return self.transition(
            session_id,
            SessionState.FAILED,
            error=err,
            progress=replace(current.progress, phase="failed", percentage=100),
        )

    def cancel(
        self, session_id: str, *, reason: str | None = None, rollback: bool = False
    ) -> ImportSession:
        err: dict[str, Any] = {"message": reason or "cancelled by user"}
        if rollback:
            err["rollback"] = _outcome_doc(rollback_session(self.store, session_id))
        current = self._require(session_id)
        return self.transition(
            session_id,
            SessionState.CANCELLED,
            error=err,
            progress=replace(current.progress, phase="cancelled", percentage=100),
        )

    # ---- Queries ----

    def list_for_user(self, user_id: str) -> list[ImportSession]:
        docs = self.store.query(
            IMPORT_SESSIONS, [("user_id", "==", user_id)], order_by="created_at"
        )
        return [ImportSession.from_document(d) for d in docs]

    def retryable_sessions(self, user_id: str) -> list[ImportSession]:
        """Failed sessions created within the last 24 hours."""

        since = self._clock() - RETRY_WINDOW
        return [
            s
            for s in self.list_for_user(user_id)
            if s.state is SessionState.FAILED and s.created_at >= since
        ]

    def cleanup(self, max_age_days: int = DEFAULT_MAX_AGE_DAYS) -> int:
        """Delete sessions older than ``max_age_days``; returns how many."""

        cutoff = self._clock() - timedelta(days=max_age_days)
        ids = [d["id"] for d in self.store.query(IMPORT_SESSIONS, [("created_at", "<", cutoff)])]
        size = self.store.max_batch_operations
        for i in range(0, len(ids), size):
            self.store.batch_delete(IMPORT_SESSIONS, ids[i : i + size])
        if ids:
            _logger.info("session:cleanup removed=%d max_age_days=%d", len(ids), max_age_days)
        return len(ids)

    def stats(self, user_id: str) -> SessionStats:
        sessions = self.list_for_user(user_id)
        done = [s for s in sessions if s.state is SessionState.COMPLETED]
        imported = sum(int((s.result or {}).get("imported_count", 0)) for s in done)
        return SessionStats(
            total=len(sessions),
            completed=len(done),
            failed=sum(1 for s in sessions if s.state is SessionState.FAILED),
            cancelled=sum(1 for s in sessions if s.state is SessionState.CANCELLED),
            total_imported=imported,
            average_import_size=round(imported / len(done)) if done else 0,
            most_recent=sessions[-1] if sessions else None,
        )


def _outcome_doc(outcome: RollbackOutcome) -> dict[str, Any]:
    return {
        "success": outcome.success,
        "deleted_count": outcome.deleted_count,
        "remaining_ids": list(outcome.remaining_ids),
        "error": outcome.error,
    }


__all__ = [
    "TRANSITIONS",
    "ImportSession",
    "SessionManager",
    "SessionState",
    "SessionStats",
]
