import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# -----------------------------
# Data classes
# -----------------------------

@dataclass(frozen=True)
class StorageObjectRef:
    key: str
    display_name: str
    content_type: Optional[str]


class Disposition(Enum):
    INLINE = "inline"
    ATTACHMENT = "attachment"


@dataclass(frozen=True)
class DispositionDecision:
    disposition: Disposition
    header_value: str


class OutcomeStatus(Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"  # dry run
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RemediationOutcome:
    ref: StorageObjectRef
    status: OutcomeStatus
    reason: Optional[str] = None
    error: Optional[Exception] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.SUCCESS, OutcomeStatus.SKIPPED)


@dataclass(frozen=True)
class StatsSnapshot:
    total_seen: int
    succeeded: int
    failed: int
    cancelled: int
    elapsed: float

    @property
    def rate(self) -> float:
        return self.total_seen / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def success_rate(self) -> Optional[float]:
        if self.total_seen == 0:
            return None
        return self.succeeded * 100.0 / self.total_seen


class RunStats:
    """
    Counters shared by every worker. All mutation goes through record(),
    which takes the lock, so total_seen == succeeded + failed + cancelled
    holds for every snapshot.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self.started_at = clock()
        self.total_seen = 0
        self.succeeded = 0
        self.failed = 0
        self.cancelled = 0

    def record(self, outcome: RemediationOutcome) -> StatsSnapshot:
        with self._lock:
            self.total_seen += 1
            if outcome.ok:
                self.succeeded += 1
            elif outcome.status is OutcomeStatus.CANCELLED:
                self.cancelled += 1
            else:
                self.failed += 1
            return self._snapshot_locked()

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._snapshot_locked()

    @property
    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def _snapshot_locked(self) -> StatsSnapshot:
        return StatsSnapshot(
            total_seen=self.total_seen,
            succeeded=self.succeeded,
            failed=self.failed,
            cancelled=self.cancelled,
            elapsed=self.elapsed,
        )
