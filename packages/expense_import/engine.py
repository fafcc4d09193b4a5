"""Batch import engine: parse, process and commit a bank statement.

Public surface:

- :meth:`BatchImportEngine.parse`: route a file to its parser and validate.
- :meth:`BatchImportEngine.process_transactions`: filter, categorize,
  deduplicate, map and validate without writing anything.
- :meth:`BatchImportEngine.commit`: write expenses in sequential atomic
  batches with progress, cooperative cancellation and rollback.
- :meth:`BatchImportEngine.import_file` / :meth:`BatchImportEngine.preview`:
  the session-tracked end-to-end run and its dry-run counterpart.

Batches are bounded by the store's per-call operation limit and committed one
at a time. Nothing is atomic across batches, so on failure or cancellation
every batch already written in the run is deleted again. If that cleanup
itself fails the engine raises :class:`~expense_import.errors.RollbackFailedError`
instead of returning a result: the store holds a partial import that needs a
human.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from os import PathLike
from pathlib import Path
from typing import Any

from .categorize import CategoryAutoMapper
from .config import EngineSettings, ImportConfig
from .duplicates import detect_duplicates_for_transactions, mark_for_review
from .errors import ImportCancelledError, RollbackFailedError, classify_error
from .ingest.router import parse_statement
from .logging_setup import get_logger
from .mapper import filter_transactions, map_transactions_to_expenses
from .models import (
    ExistingRecord,
    Expense,
    ImportMetadata,
    ImportProgress,
    ImportResult,
    LabeledTransaction,
    ParsedTransaction,
    ParseResult,
    ProcessResult,
    ProcessSummary,
)
from .resilience import CancellationToken, check_import_integrity, retry_call, rollback_import
from .sessions import SessionManager, SessionState
from .store import EXPENSES, DocumentStore, load_recent_expenses
from .validation import validate_expenses, validate_transactions

_logger = get_logger("expense_import.engine")

type ProgressSink = Callable[[ImportProgress], None]

# Share of the overall run each phase covers in import_file.
PARSE_RANGE = (0, 20)
PROCESS_RANGE = (20, 40)
IMPORT_RANGE = (40, 100)


class _ProgressEmitter:
    """Forward progress events while keeping the percentage non-decreasing.

    With ``span`` set, local 0-100 percentages are scaled into that range.
    """

    def __init__(
        self,
        sink: ProgressSink | None,
        *,
        span: tuple[int, int] = (0, 100),
        parent: _ProgressEmitter | None = None,
    ) -> None:
        self._sink = sink
        self._span = span
        self._parent = parent
        self.last = parent.last if parent is not None else 0

    def scaled(self, span: tuple[int, int]) -> _ProgressEmitter:
        return _ProgressEmitter(self._sink, span=span, parent=self)

    def __call__(self, progress: ImportProgress) -> None:
        lo, hi = self._span
        pct = lo + (hi - lo) * max(0, min(progress.percentage, 100)) // 100
        pct = max(pct, self.last)
        self.last = pct
        if self._parent is not None:
            self._parent.last = max(self._parent.last, pct)
        if self._sink is not None:
            self._sink(replace(progress, percentage=pct))


@dataclass(frozen=True, slots=True)
class Preview:
    parse: ParseResult
    process: ProcessResult | None = None

    @property
    def success(self) -> bool:
        return self.parse.success and self.process is not None and self.process.success


class BatchImportEngine:
    """Orchestrates one statement import against a :class:`DocumentStore`.

    Parameters
    ----------
    store:
        Document store receiving expenses and sessions.
    settings:
        Batch size, retry policy and integrity sampling.
    categorizer:
        Category auto-mapper; a fresh one (with no correction memory) by default.
    sessions:
        Session manager used by :meth:`import_file`; defaults to one over ``store``.
    sleep:
        Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: EngineSettings | None = None,
        categorizer: CategoryAutoMapper | None = None,
        sessions: SessionManager | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.store = store
        self.settings = settings or EngineSettings()
        self.categorizer = categorizer or CategoryAutoMapper()
        self.sessions = sessions or SessionManager(store)
        self._sleep = sleep

    @property
    def batch_size(self) -> int:
        limit = self.store.max_batch_operations
        return min(self.settings.batch_size or limit, limit)

    # ------------------------------------------------------------------
    # Parse
    # ------------------------------------------------------------------

    def parse(
        self,
        source: str | PathLike[str] | bytes,
        *,
        file_name: str | None = None,
        date_format: str = "auto",
        today: date | None = None,
    ) -> ParseResult:
        """Parse and validate a statement; transient read errors are retried."""

        name = file_name or (Path(source).name if not isinstance(source, bytes) else None)
        try:
            result = retry_call(
                lambda: parse_statement(
                    source, file_name=file_name, date_format=date_format, today=today
                ),
                policy=self.settings.retry,
                description="parse",
                sleep=self._sleep,
            )
        except OSError as e:
            report = classify_error(e)
            _logger.error("parse:failed file=%s error=%s", name, e)
            return ParseResult(
                success=False,
                error=f"Failed to read {name or 'statement'}: {e}",
                error_kind=str(report.kind),
            )
        if result.success:
            invalid = len(result.validation.invalid) if result.validation else 0
            _logger.info(
                "parse:done file=%s transactions=%d invalid=%d row_errors=%d",
                name,
                len(result.transactions),
                invalid,
                len(result.row_errors),
            )
        else:
            _logger.info("parse:rejected file=%s error=%s", name, result.error)
        return result

    # ------------------------------------------------------------------
    # Process
    # ------------------------------------------------------------------

    def load_existing_records(
        self, config: ImportConfig, *, today: date | None = None
    ) -> tuple[list[ExistingRecord], list[LabeledTransaction]]:
        """Recent stored expenses as duplicate candidates and labeled history."""

        docs = load_recent_expenses(
            self.store,
            config.couple_id,
            lookback_days=config.duplicates.lookback_days,
            today=today,
            primary_currency=config.primary_currency,
        )
        existing = [ExistingRecord.from_document(d) for d in docs]
        history = [
            LabeledTransaction(description=r.description, category_key=r.category_key)
            for r in existing
            if r.category_key
        ]
        return existing, history

    def process_transactions(
        self,
        transactions: Sequence[ParsedTransaction],
        config: ImportConfig,
        *,
        existing: Sequence[ExistingRecord] | None = None,
        past_transactions: Sequence[LabeledTransaction] | None = None,
        today: date | None = None,
        session_id: str | None = None,
    ) -> ProcessResult:
        """Turn parsed transactions into validated expenses, without writing.

        Imports larger than ``config.max_transactions`` are rejected outright.
        When ``existing`` or ``past_transactions`` is omitted it is loaded from
        the store (recent expenses of ``config.couple_id``).
        """

        if len(transactions) > config.max_transactions:
            msg = (
                f"Too many transactions ({len(transactions)}); at most "
                f"{config.max_transactions} can be imported at once. Split the statement "
                "into smaller date ranges."
            )
            _logger.warning("process:rejected count=%d", len(transactions))
            return ProcessResult(success=False, error=msg)

        if existing is None or past_transactions is None:
            loaded, history = self.load_existing_records(config, today=today)
            existing = loaded if existing is None else existing
            past_transactions = history if past_transactions is None else past_transactions

        filtered = filter_transactions(transactions, config.filters)
        report = validate_transactions(filtered, today=today)
        valid = report.valid
        suggestions = self.categorizer.suggest_categories(
            valid, config.available_categories, config.custom_keywords, past_transactions
        )

        duplicate_results = []
        keep = [True] * len(valid)
        auto_skipped = flagged = 0
        if config.detect_duplicates and existing:
            duplicate_results = detect_duplicates_for_transactions(
                valid, existing, config.duplicates, today=today
            )
            for i, flag in enumerate(mark_for_review(duplicate_results, config.duplicates)):
                if flag.needs_review:
                    flagged += 1
                if flag.auto_skip and config.skip_auto_duplicates:
                    keep[i] = False
                    auto_skipped += 1

        to_map = [tx for tx, k in zip(valid, keep, strict=True) if k]
        to_map_suggestions = [s for s, k in zip(suggestions, keep, strict=True) if k]
        expenses = map_transactions_to_expenses(
            to_map, config, suggestions=to_map_suggestions, session_id=session_id
        )
        checked = validate_expenses(expenses, today=today)

        summary = ProcessSummary(
            total_parsed=len(transactions),
            after_filters=len(filtered),
            valid=len(checked.valid),
            invalid=len(report.invalid) + len(checked.invalid),
            duplicates=sum(1 for r in duplicate_results if r.has_duplicates),
            auto_skipped=auto_skipped,
            flagged_for_review=flagged,
        )
        _logger.info(
            "process:done parsed=%d filtered=%d valid=%d invalid=%d duplicates=%d skipped=%d",
            summary.total_parsed,
            summary.after_filters,
            summary.valid,
            summary.invalid,
            summary.duplicates,
            summary.auto_skipped,
        )
        return ProcessResult(
            success=True,
            valid_transactions=valid,
            category_suggestions=suggestions,
            duplicate_results=duplicate_results,
            expenses=checked.valid,
            invalid_expenses=checked.invalid,
            rejected_transactions=report.invalid,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    @staticmethod
    def _stamp(expense: Expense, session_id: str | None, batch_index: int) -> Expense:
        meta = expense.import_metadata or ImportMetadata(
            session_id=session_id, imported_at=datetime.now(UTC)
        )
        meta = replace(meta, session_id=session_id or meta.session_id, batch_index=batch_index)
        return replace(expense, id=expense.id or f"exp_{uuid.uuid4().hex}", import_metadata=meta)

    def commit(
        self,
        expenses: Sequence[Expense],
        *,
        on_progress: ProgressSink | None = None,
        rollback_on_failure: bool = True,
        session_id: str | None = None,
        cancellation_token: CancellationToken | None = None,
        couple_id: str | None = None,
    ) -> ImportResult:
        """Write ``expenses`` in sequential batches.

        Cancellation is checked before each batch and between retries. On a
        failed or cancelled batch with ``rollback_on_failure`` every record
        committed so far is deleted and the result reports ``rolled_back``;
        without it the run stops and reports a partial import. The last
        progress event is always 100%.

        Raises
        ------
        RollbackFailedError
            Cleanup after a failure did not complete.
        """

        if isinstance(on_progress, _ProgressEmitter):
            emit = on_progress
        else:
            emit = _ProgressEmitter(on_progress)
        size = self.batch_size
        total = len(expenses)
        batches = [
            [self._stamp(e, session_id, i // size) for e in expenses[i : i + size]]
            for i in range(0, total, size)
        ]
        summary: dict[str, Any] = {"total": total, "batch_size": size, "batches": len(batches)}
        committed: list[str] = []
        emit(ImportProgress("importing", 0, 0, total, f"Importing {total} expense(s)"))

        for index, batch in enumerate(batches):
            docs = [e.to_document() for e in batch]
            try:
                if cancellation_token is not None:
                    cancellation_token.raise_if_cancelled()
                retry_call(
                    lambda docs=docs: self.store.batch_write(EXPENSES, docs),
                    policy=self.settings.retry,
                    description=f"batch_write[{index}]",
                    sleep=self._sleep,
                    token=cancellation_token,
                )
            except Exception as e:
                return self._abort(
                    e,
                    committed=committed,
                    batch_index=index,
                    total_batches=len(batches),
                    rollback_on_failure=rollback_on_failure,
                    session_id=session_id,
                    emit=emit,
                    summary=summary,
                )
            committed.extend(str(d["id"]) for d in docs)
            _logger.info(
                "commit:batch_done index=%d size=%d committed=%d/%d",
                index,
                len(docs),
                len(committed),
                total,
            )
            emit(
                ImportProgress(
                    "importing",
                    len(committed) * 100 // total,
                    len(committed),
                    total,
                    f"Batch {index + 1}/{len(batches)}",
                )
            )

        owner = couple_id or (expenses[0].couple_id if expenses else None)
        integrity = None
        if owner is not None and committed:
            integrity = check_import_integrity(
                self.store,
                committed,
                owner,
                sample_size=self.settings.integrity_sample_size,
            )
        emit(ImportProgress("completed", 100, len(committed), total))
        return ImportResult(
            success=True,
            imported_count=len(committed),
            imported_ids=committed,
            session_id=session_id,
            batches_committed=len(batches),
            total_batches=len(batches),
            integrity=integrity,
            summary=summary,
        )

    def _abort(
        self,
        exc: Exception,
        *,
        committed: list[str],
        batch_index: int,
        total_batches: int,
        rollback_on_failure: bool,
        session_id: str | None,
        emit: _ProgressEmitter,
        summary: dict[str, Any],
    ) -> ImportResult:
        cancelled = isinstance(exc, ImportCancelledError)
        phase = "cancelled" if cancelled else "failed"
        if cancelled:
            _logger.warning("commit:cancelled batch=%d committed=%d", batch_index, len(committed))
            message = str(exc)
        else:
            _logger.error("commit:batch_failed batch=%d error=%s", batch_index, exc)
            message = f"Batch {batch_index + 1} of {total_batches} failed: {exc}"

        if rollback_on_failure and committed:
            outcome = rollback_import(
                self.store,
                committed,
                session_id=session_id,
                policy=self.settings.retry,
                sleep=self._sleep,
            )
            if not outcome.success:
                emit(ImportProgress(phase, 100, len(outcome.remaining_ids), len(committed)))
                raise RollbackFailedError(
                    session_id, outcome.remaining_ids, outcome.error or "unknown error"
                ) from exc
            emit(ImportProgress(phase, 100, 0, len(committed), "Rolled back"))
            return ImportResult(
                success=False,
                imported_count=0,
                errors=[message],
                rolled_back=True,
                cancelled=cancelled,
                session_id=session_id,
                batches_committed=batch_index,
                total_batches=total_batches,
                rollback=outcome,
                summary=summary,
            )

        emit(ImportProgress(phase, 100, len(committed), summary["total"]))
        return ImportResult(
            success=False,
            imported_count=len(committed),
            imported_ids=list(committed),
            errors=[message],
            cancelled=cancelled,
            partial=bool(committed),
            session_id=session_id,
            batches_committed=batch_index,
            total_batches=total_batches,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # End-to-end
    # ------------------------------------------------------------------

    def preview(
        self,
        source: str | PathLike[str] | bytes,
        config: ImportConfig,
        *,
        file_name: str | None = None,
        today: date | None = None,
    ) -> Preview:
        """Parse and process without writing expenses or sessions."""

        parsed = self.parse(
            source, file_name=file_name, date_format=config.date_format, today=today
        )
        if not parsed.success:
            return Preview(parse=parsed)
        return Preview(
            parse=parsed,
            process=self.process_transactions(parsed.transactions, config, today=today),
        )

    def import_file(
        self,
        source: str | PathLike[str] | bytes,
        config: ImportConfig,
        *,
        user_id: str,
        file_name: str | None = None,
        on_progress: ProgressSink | None = None,
        cancellation_token: CancellationToken | None = None,
        rollback_on_failure: bool = True,
        today: date | None = None,
    ) -> ImportResult:
        """Run parse, process and commit under a tracked import session.

        Progress is staged: parsing 0-20%, processing 20-40%, importing
        40-100%. The session ends ``completed``, ``failed`` or ``cancelled``; an
        unexpected error fails the session and is re-raised.
        """

        name = file_name or (Path(source).name if not isinstance(source, bytes) else None)
        session = self.sessions.create(user_id, couple_id=config.couple_id, file_name=name)
        sid = session.id
        emitter = _ProgressEmitter(self._session_sink(sid, on_progress))

        def stop(message: str, kind: str | None) -> ImportResult:
            emitter(ImportProgress("failed", 100, message=message))
            self.sessions.fail(sid, {"message": message, "kind": kind})
            return ImportResult(
                success=False, imported_count=0, errors=[message], session_id=sid
            )

        try:
            self.sessions.start_phase(sid, SessionState.PARSING)
            parse_stage = emitter.scaled(PARSE_RANGE)
            parse_stage(ImportProgress("parsing", 0, message=f"Reading {name or 'statement'}"))
            parsed = self.parse(
                source, file_name=file_name, date_format=config.date_format, today=today
            )
            if not parsed.success:
                return stop(parsed.error or "Parsing failed", parsed.error_kind)
            n = len(parsed.transactions)
            parse_stage(ImportProgress("parsing", 100, n, n))

            if cancellation_token is not None:
                cancellation_token.raise_if_cancelled()
            self.sessions.start_phase(
                sid,
                SessionState.PROCESSING,
                file_type=parsed.metadata.get("file_type"),
                file_size=parsed.metadata.get("file_size"),
            )
            processed = self.process_transactions(
                parsed.transactions, config, today=today, session_id=sid
            )
            if not processed.success:
                return stop(processed.error or "Processing failed", "validation")
            emitter.scaled(PROCESS_RANGE)(
                ImportProgress("processing", 100, len(processed.expenses), n)
            )

            if cancellation_token is not None:
                cancellation_token.raise_if_cancelled()
            self.sessions.start_phase(sid, SessionState.IMPORTING)
            result = self.commit(
                processed.expenses,
                on_progress=emitter.scaled(IMPORT_RANGE),
                rollback_on_failure=rollback_on_failure,
                session_id=sid,
                cancellation_token=cancellation_token,
                couple_id=config.couple_id,
            )
        except ImportCancelledError as e:
            emitter(ImportProgress("cancelled", 100, message=str(e)))
            self.sessions.cancel(sid, reason=e.reason)
            return ImportResult(
                success=False, imported_count=0, errors=[str(e)], cancelled=True, session_id=sid
            )
        except RollbackFailedError as e:
            _logger.critical("import:rollback_failed session=%s error=%s", sid, e)
            self.sessions.fail(
                sid,
                {
                    "message": str(e),
                    "kind": str(e.kind),
                    "critical": True,
                    "remaining_ids": list(e.remaining_ids),
                },
            )
            raise
        except Exception as e:
            report = classify_error(e)
            _logger.error("import:aborted session=%s kind=%s error=%s", sid, report.kind, e)
            error = {"message": str(e), "kind": str(report.kind)}
            try:
                emitter(ImportProgress("failed", 100, message=report.message))
                self.sessions.fail(sid, error, rollback=rollback_on_failure)
            except Exception as cleanup:
                # The store is unhealthy; record the session as failed without cleanup.
                _logger.critical("import:cleanup_failed session=%s error=%s", sid, cleanup)
                self.sessions.fail(
                    sid, {**error, "critical": True, "cleanup_error": str(cleanup)}
                )
            raise

        summary = {**result.summary, **_process_summary(processed.summary)}
        result = replace(result, summary=summary)
        if result.success:
            self.sessions.complete(
                sid,
                {
                    "imported_count": result.imported_count,
                    "batches": result.batches_committed,
                    "integrity_ok": result.integrity.ok if result.integrity else None,
                    **summary,
                },
            )
        elif result.cancelled:
            self.sessions.cancel(sid, reason="; ".join(result.errors))
        else:
            self.sessions.fail(
                sid,
                {
                    "message": "; ".join(result.errors),
                    "rolled_back": result.rolled_back,
                    "partial": result.partial,
                    "imported_count": result.imported_count,
                },
            )
        return result

    def _session_sink(self, session_id: str, on_progress: ProgressSink | None) -> ProgressSink:
        def sink(progress: ImportProgress) -> None:
            session = self.sessions.get(session_id)
            if session is not None and not session.state.is_terminal:
                self.sessions.update_progress(session_id, progress)
            if on_progress is not None:
                on_progress(progress)

        return sink


def _process_summary(summary: ProcessSummary | None) -> dict[str, Any]:
    if summary is None:
        return {}
    return {
        "total_parsed": summary.total_parsed,
        "after_filters": summary.after_filters,
        "valid": summary.valid,
        "invalid": summary.invalid,
        "duplicates": summary.duplicates,
        "auto_skipped": summary.auto_skipped,
        "flagged_for_review": summary.flagged_for_review,
    }


__all__ = [
    "IMPORT_RANGE",
    "PARSE_RANGE",
    "PROCESS_RANGE",
    "BatchImportEngine",
    "Preview",
    "ProgressSink",
]
