"""
Progress and metrics reporting.

Every line is written twice: to the console and to an append-only log file,
so the history of a run survives losing the terminal. Per-object detail only
goes to the file; the console gets progress lines at a cadence, failures, and
the final summary.
"""

import logging
import sys
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

from .errors import ConfigurationError
from .models import DispositionDecision, OutcomeStatus, RemediationOutcome, StatsSnapshot, StorageObjectRef

LOGGER_NAME = "s3_disposition_fix.sink"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
RULE = "=" * 50


def default_log_path(now: Optional[datetime] = None) -> Path:
    ts = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return Path(tempfile.gettempdir()) / f"s3_metadata_fix_{ts}.log"


def open_log_sink(path: Path) -> logging.Logger:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot open log file {path}: {e}") from e
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    close_log_sink(logger)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)
    return logger


def close_log_sink(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


# -----------------------------
# Formatting
# -----------------------------

def utcnow_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def fmt_count(n: int) -> str:
    return f"{n:,}"


def fmt_hours_minutes(seconds: float) -> str:
    total = int(round(seconds))
    return f"{total // 3600}h {(total % 3600) // 60}m"


def percent(part: int, whole: Optional[int]) -> Optional[float]:
    if not whole:
        return None
    return round(part * 100.0 / whole, 1)


def extrapolate_full_run(inventory_total: int, sample_seen: int, elapsed: float) -> Optional[float]:
    """Scale the sample's observed time by inventory size / sample size."""
    if sample_seen <= 0 or inventory_total <= 0:
        return None
    return inventory_total * elapsed / sample_seen


class ProgressReporter:
    def __init__(
        self,
        logger: logging.Logger,
        dry_run: bool = False,
        total: Optional[int] = None,
        inventory_total: Optional[int] = None,
        progress_interval: int = 1000,
        stream: Optional[TextIO] = None,
    ):
        self.logger = logger
        self.dry_run = dry_run
        self.total = total
        self.inventory_total = inventory_total
        self.progress_interval = 1 if dry_run else max(1, progress_interval)
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    # ----- sinks -----

    def emit(self, message: str, level: int = logging.INFO, console: bool = True) -> None:
        with self._lock:
            if console:
                print(f"[{utcnow_stamp()}] {message}", file=self.stream, flush=True)
            self.logger.log(level, message)

    def file_only(self, message: str, level: int = logging.INFO) -> None:
        self.emit(message, level=level, console=False)

    # ----- progress -----

    def should_report(self, total_seen: int) -> bool:
        return total_seen == 1 or total_seen % self.progress_interval == 0

    def report(
        self,
        total_seen: int,
        succeeded: int,
        failed: int,
        elapsed: float,
        current: Optional[StorageObjectRef] = None,
    ) -> str:
        rate = total_seen / elapsed if elapsed > 0 else 0.0
        parts = [f"Processed {fmt_count(total_seen)}"]
        if self.total:
            parts[0] += f"/{fmt_count(self.total)}"
            pct = percent(total_seen, self.total)
            parts.append(f"{pct}%")
        parts.append(f"ok={fmt_count(succeeded)} failed={fmt_count(failed)}")
        parts.append(f"{rate:.2f} files/s")
        if not self.dry_run and self.total and rate > 0 and total_seen < self.total:
            parts.append(f"eta {fmt_hours_minutes((self.total - total_seen) / rate)}")
        line = " - ".join(parts)
        if current is not None:
            line += f" (last: {current.display_name})"
        self.emit(line)
        return line

    def maybe_report(self, snap: StatsSnapshot, current: Optional[StorageObjectRef] = None) -> None:
        if self.should_report(snap.total_seen):
            self.report(snap.total_seen, snap.succeeded, snap.failed, snap.elapsed, current=current)

    # ----- per object -----

    def outcome(self, outcome: RemediationOutcome, decision: Optional[DispositionDecision]) -> None:
        ref = outcome.ref
        disposition = decision.header_value if decision else "-"
        detail = f"{ref.display_name} (key: {ref.key}) Content-Type: {ref.content_type or '-'}, Disposition: {disposition}"
        if outcome.status is OutcomeStatus.SUCCESS:
            self.file_only(f"SUCCESS {detail}")
        elif outcome.status is OutcomeStatus.SKIPPED:
            self.emit(f"DRY RUN would update {detail}")
        elif outcome.status is OutcomeStatus.CANCELLED:
            self.file_only(f"CANCELLED {detail}", level=logging.WARNING)
        elif outcome.status is OutcomeStatus.NOT_FOUND:
            self.emit(f"ERROR file not found in S3: {detail}", level=logging.ERROR)
        else:
            self.emit(f"ERROR {outcome.reason}: {detail}", level=logging.ERROR)

    # ----- summary -----

    def summary(
        self, snap: StatsSnapshot, log_path: Optional[Path] = None, interrupted: bool = False
    ) -> Optional[float]:
        rate = snap.rate
        self.emit(RULE)
        self.emit("Processing interrupted!" if interrupted else "Processing complete!")
        self.emit(f"Total files processed: {fmt_count(snap.total_seen)}")
        self.emit(f"Successful updates: {fmt_count(snap.succeeded)}")
        self.emit(f"Failed updates: {fmt_count(snap.failed)}")
        if snap.cancelled:
            self.emit(f"Cancelled before dispatch: {fmt_count(snap.cancelled)}")
        self.emit(f"Time elapsed: {snap.elapsed:.2f}s")
        self.emit(f"Files per second: {rate:.2f}")
        success = snap.success_rate
        self.emit(f"Success rate: {'N/A' if success is None else f'{success:.2f}%'}")

        estimate = None
        if self.dry_run and self.inventory_total:
            estimate = extrapolate_full_run(self.inventory_total, snap.total_seen, snap.elapsed)
            if estimate is not None:
                self.emit(
                    f"Estimated time for full run over {fmt_count(self.inventory_total)} files: "
                    f"{fmt_hours_minutes(estimate)}"
                )
        if log_path is not None:
            self.emit(f"Log saved to: {log_path}")
        return estimate
