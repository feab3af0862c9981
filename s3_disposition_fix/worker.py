"""
Remediation worker pool.

A bounded ThreadPoolExecutor runs one metadata-replacing copy per blob. Each
submitted blob yields exactly one RemediationOutcome: not-found and any other
exception are classified and recorded, never raised into the pool, and never
retried within the run.
"""

import concurrent.futures as futures
import threading
import time
from typing import Callable, List, Optional

from .disposition import decide
from .errors import ObjectNotFound, RemediationError
from .models import (
    DispositionDecision,
    OutcomeStatus,
    RemediationOutcome,
    RunStats,
    StorageObjectRef,
)
from .report import ProgressReporter
from .store import ObjectStore

DEFAULT_CONCURRENCY = 32
PACING_EVERY = 50
PACING_DELAY = 0.01

FAILED_STATUSES = (OutcomeStatus.NOT_FOUND, OutcomeStatus.FAILED)


class RemediationPool:
    def __init__(
        self,
        store: ObjectStore,
        dry_run: bool = False,
        concurrency: int = DEFAULT_CONCURRENCY,
        stats: Optional[RunStats] = None,
        reporter: Optional[ProgressReporter] = None,
        policy: Callable[[Optional[str], str], DispositionDecision] = decide,
        pacing_every: int = PACING_EVERY,
        pacing_delay: float = PACING_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self.store = store
        self.dry_run = dry_run
        self.concurrency = concurrency
        self.stats = stats or RunStats()
        self.reporter = reporter
        self.policy = policy
        self.pacing_every = pacing_every
        self.pacing_delay = pacing_delay
        self._sleep = sleep
        self._cancel = threading.Event()
        self._failures_lock = threading.Lock()
        self.failures: List[RemediationOutcome] = []
        self._executor: Optional[futures.ThreadPoolExecutor] = None

    # ----- lifecycle -----

    def __enter__(self) -> "RemediationPool":
        self._executor = futures.ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="remediate"
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._executor is not None:
            # In-flight copies always finish; queued work sees the cancel flag.
            self._executor.shutdown(wait=True)
            self._executor = None

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ----- per object -----

    def process(self, ref: StorageObjectRef, decision: DispositionDecision, dry_run: bool) -> RemediationOutcome:
        if dry_run:
            return RemediationOutcome(ref=ref, status=OutcomeStatus.SKIPPED, reason="dry run")
        try:
            self.store.replace_metadata(ref.key, ref.content_type, decision.header_value)
        except ObjectNotFound as e:
            return RemediationOutcome(ref=ref, status=OutcomeStatus.NOT_FOUND, reason="object not found", error=e)
        except RemediationError as e:
            return RemediationOutcome(ref=ref, status=OutcomeStatus.FAILED, reason=e.reason, error=e)
        except Exception as e:
            wrapped = RemediationError(ref.key, f"{type(e).__name__}: {e}")
            wrapped.__cause__ = e
            return RemediationOutcome(ref=ref, status=OutcomeStatus.FAILED, reason=wrapped.reason, error=wrapped)
        return RemediationOutcome(ref=ref, status=OutcomeStatus.SUCCESS)

    def _handle(self, ref: StorageObjectRef) -> RemediationOutcome:
        decision = None
        if self.cancelled:
            outcome = RemediationOutcome(ref=ref, status=OutcomeStatus.CANCELLED, reason="run cancelled")
        else:
            decision = self.policy(ref.content_type, ref.display_name)
            outcome = self.process(ref, decision, self.dry_run)

        snap = self.stats.record(outcome)
        if outcome.status in FAILED_STATUSES:
            with self._failures_lock:
                self.failures.append(outcome)
        if self.reporter is not None:
            self.reporter.outcome(outcome, decision)
            self.reporter.maybe_report(snap, current=ref)
        if (
            not self.dry_run
            and outcome.status is not OutcomeStatus.CANCELLED
            and self.pacing_every > 0
            and snap.total_seen % self.pacing_every == 0
        ):
            self._sleep(self.pacing_delay)
        return outcome

    # ----- batches -----

    def run_batch(self, refs: List[StorageObjectRef]) -> List[RemediationOutcome]:
        """Submit a batch and block until every object in it has an outcome."""
        if self._executor is None:
            raise RuntimeError("RemediationPool must be used as a context manager")
        pending = [self._executor.submit(self._handle, ref) for ref in refs]
        try:
            futures.wait(pending)
        except KeyboardInterrupt:
            self.cancel()
            futures.wait(pending)
            raise
        return [f.result() for f in pending]
