"""
Concurrent, cancellable, quota-aware batch resolution.

A fixed pool of worker threads pulls record indexes from a shared queue.
Each record runs against a per-record deadline; results are written back
by input position, so output order always matches input order.

Quota exhaustion pauses every worker: the offending record goes back to
the front of the queue and a single timer wakes the pool after the
cooldown.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout, as_completed
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from ..utils.errors import EmptyZoneDatabaseError, QuotaExhaustedError, RecordAbandonedError
from ..zones.zone_index import ZoneIndex
from .models import (
    AddressRecord,
    BatchOutcome,
    BatchResult,
    BatchSummary,
    ResolutionResult,
    Sentinel,
)
from .orchestrator import AddressResolver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
PauseCallback = Callable[[float], None]
RecordLike = Union[AddressRecord, Mapping[str, Any]]

# How often a waiting worker re-checks cancellation and its record deadline
_POLL_S = 0.1


class BatchProcessor:
    """
    Drive an AddressResolver over many records.

    Args:
        resolver: Per-record orchestrator
        zones: Zone index; processing refuses to start while it is empty
        concurrency: Number of worker threads
        record_timeout_s: Deadline per record; an expired record becomes
            DIR_NO_ENCONTRADA
        quota_pause_s: Cooldown after a quota-exhaustion signal
        progress_interval_s: Minimum spacing between progress callbacks
    """

    def __init__(
        self,
        resolver: AddressResolver,
        zones: ZoneIndex,
        concurrency: int = 1,
        record_timeout_s: float = 8.0,
        quota_pause_s: float = 30.0,
        progress_interval_s: float = 0.5,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.resolver = resolver
        self.zones = zones
        self.concurrency = concurrency
        self.record_timeout_s = record_timeout_s
        self.quota_pause_s = quota_pause_s
        self.progress_interval_s = progress_interval_s

    def reprocess(self, record: RecordLike) -> ResolutionResult:
        """Resolve a single (typically operator-edited) record again."""
        return self.resolver.resolve(_as_record(record))

    def process(
        self,
        records: Iterable[RecordLike],
        on_progress: Optional[ProgressCallback] = None,
        on_pause: Optional[PauseCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> BatchOutcome:
        """
        Resolve every record.

        Args:
            records: AddressRecords or mappings with the same fields
            on_progress: Called with a 0-100 percentage, at most once per
                ``progress_interval_s`` (the final 100 is always sent)
            on_pause: Called with the pause length in seconds whenever a
                quota pause starts
            cancel: Set to stop; queued records are discarded and returned
                as SIN_PROCESAR

        Returns:
            BatchOutcome with exactly one result per input record, in order

        Raises:
            EmptyZoneDatabaseError: no zones are loaded
        """
        if len(self.zones) == 0:
            raise EmptyZoneDatabaseError("No postal zones loaded; load a zone file before processing")

        items = [_as_record(r) for r in records]
        total = len(items)
        cancel = cancel or threading.Event()
        run = _BatchRun(self, items, on_progress, on_pause, cancel)

        logger.info(
            f"Starting batch of {total} records with {len(self.zones)} zones "
            f"(concurrency={self.concurrency})"
        )
        started = time.perf_counter()
        run.execute()

        results = [
            BatchResult(index=i, record=items[i],
                        result=res if res is not None else ResolutionResult.sentinel(Sentinel.SIN_PROCESAR))
            for i, res in enumerate(run.results)
        ]
        summary = BatchSummary.from_results(results, cancelled=cancel.is_set())
        logger.info(
            f"Batch finished in {time.perf_counter() - started:.1f}s: "
            f"{summary.succeeded} ok, {summary.failed} failed, "
            f"{total - summary.processed} unprocessed"
        )
        return BatchOutcome(results=results, summary=summary)


def _as_record(record: RecordLike) -> AddressRecord:
    if isinstance(record, AddressRecord):
        return record
    return AddressRecord.model_validate(dict(record))


class _BatchRun:
    """State of one ``process`` call: queue, pause flag, progress."""

    def __init__(
        self,
        processor: BatchProcessor,
        records: list[AddressRecord],
        on_progress: Optional[ProgressCallback],
        on_pause: Optional[PauseCallback],
        cancel: threading.Event,
    ):
        self.processor = processor
        self.records = records
        self.on_progress = on_progress
        self.on_pause = on_pause
        self.cancel = cancel

        self.results: list[Optional[ResolutionResult]] = [None] * len(records)
        self.queue: deque[int] = deque(range(len(records)))
        self.cond = threading.Condition()
        self.paused = False
        self.resume_timer: Optional[threading.Timer] = None
        self.completed = 0
        self.last_progress = 0.0

    def execute(self) -> None:
        concurrency = self.processor.concurrency
        record_pool = ThreadPoolExecutor(max_workers=concurrency * 2, thread_name_prefix="record")
        try:
            with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="batch") as pool:
                futures = [pool.submit(self._worker, record_pool) for _ in range(concurrency)]
                for future in as_completed(futures):
                    future.result()
        finally:
            with self.cond:
                if self.resume_timer is not None:
                    self.resume_timer.cancel()
                    self.resume_timer = None
            record_pool.shutdown(wait=False, cancel_futures=True)

        if not self.cancel.is_set():
            self._report_progress(force=True)

    def _next_index(self) -> Optional[int]:
        with self.cond:
            while True:
                if self.cancel.is_set():
                    return None
                if self.paused:
                    self.cond.wait(timeout=_POLL_S)
                    continue
                if not self.queue:
                    return None
                return self.queue.popleft()

    def _worker(self, record_pool: ThreadPoolExecutor) -> None:
        while True:
            idx = self._next_index()
            if idx is None:
                return

            try:
                result = self._run_one(idx, record_pool)
            except QuotaExhaustedError as e:
                self._pause(idx, e)
                continue

            if result is None:
                # cancelled while in flight; leave the slot unprocessed
                return

            if result.is_sentinel:
                logger.warning(f"Record {idx} resolved to {result.postal_code}")
            self.results[idx] = result
            with self.cond:
                self.completed += 1
            self._report_progress()

    def _run_one(self, idx: int, record_pool: ThreadPoolExecutor) -> Optional[ResolutionResult]:
        """
        Resolve one record against its deadline.

        The deadline runs from the moment the record starts, not from
        submission, so a record queued behind abandoned work still gets its
        full allowance. Returns None if the batch was cancelled while the
        record was in flight. Raises QuotaExhaustedError from the resolver.
        """
        abandon = threading.Event()
        started_at: list[float] = []

        def task() -> ResolutionResult:
            started_at.append(time.monotonic())
            return self.processor.resolver.resolve(self.records[idx], abandon)

        future = record_pool.submit(task)

        while True:
            if self.cancel.is_set():
                abandon.set()
                future.cancel()
                return None
            if not started_at:
                try:
                    return future.result(timeout=_POLL_S)
                except FutureTimeout:
                    continue
                except RecordAbandonedError:
                    return None
            remaining = started_at[0] + self.processor.record_timeout_s - time.monotonic()
            if remaining <= 0:
                abandon.set()
                logger.warning(
                    f"Record {idx} timed out after {self.processor.record_timeout_s}s"
                )
                return ResolutionResult.sentinel(Sentinel.DIR_NO_ENCONTRADA)
            try:
                return future.result(timeout=min(remaining, _POLL_S))
            except FutureTimeout:
                continue
            except RecordAbandonedError:
                return None

    def _pause(self, idx: int, error: QuotaExhaustedError) -> None:
        pause_s = self.processor.quota_pause_s
        started = False
        with self.cond:
            self.queue.appendleft(idx)
            if not self.paused:
                self.paused = True
                self.resume_timer = threading.Timer(pause_s, self._resume)
                self.resume_timer.daemon = True
                self.resume_timer.start()
                started = True

        if started:
            logger.warning(f"{error}; record {idx} re-queued, pausing all workers for {pause_s:.0f}s")
            if self.on_pause:
                self.on_pause(pause_s)

    def _resume(self) -> None:
        with self.cond:
            self.paused = False
            self.resume_timer = None
            self.cond.notify_all()
        logger.info("Quota pause over, resuming workers")

    def _report_progress(self, force: bool = False) -> None:
        if self.on_progress is None:
            return
        total = len(self.records)
        with self.cond:
            now = time.monotonic()
            if not force and now - self.last_progress < self.processor.progress_interval_s:
                return
            self.last_progress = now
            percent = 100.0 if total == 0 else self.completed * 100.0 / total
        self.on_progress(percent)
