"""
Run controller.

Validates the configuration, counts the inventory, drives the enumerator
through the worker pool one batch at a time and prints the final summary.

Exit status:
  0    run completed, whatever the number of per-object failures
  1    configuration, credentials, database URL or log file unusable; nothing was touched
  2    the blob datastore could not be read
  130  interrupted; in-flight copies were allowed to finish
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from .config import RunConfig
from .errors import ConfigurationError, EnumerationError
from .models import RemediationOutcome, RunStats
from .report import RULE, ProgressReporter, close_log_sink, default_log_path, fmt_count, open_log_sink
from .sources import DRY_RUN_SAMPLE_SIZE, BlobSource, Enumerator, ExportFileSource, SqlBlobSource, format_export_line
from .store import ObjectStore, S3ObjectStore, build_s3_client
from .worker import RemediationPool

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_ENUMERATION = 2
EXIT_INTERRUPTED = 130


def validate_config(config: RunConfig, has_source: bool = False) -> None:
    if not (config.bucket or "").strip():
        raise ConfigurationError("missing required bucket (--bucket or S3_BUCKET)")
    if not config.credentials.access_key or not config.credentials.secret_key:
        raise ConfigurationError("AWS credentials are required")
    if config.concurrency <= 0:
        raise ConfigurationError("concurrency must be positive")
    if config.batch_size <= 0:
        raise ConfigurationError("batch size must be positive")
    if not has_source and not (config.database_url or config.source_file):
        raise ConfigurationError("a blob source is required (--database-url or --source-file)")


def build_source(config: RunConfig) -> BlobSource:
    if config.source_file:
        return ExportFileSource(config.source_file)
    return SqlBlobSource.from_url(config.database_url)


def failed_keys_path(config: RunConfig, log_path: Path) -> Path:
    if config.failed_keys_file:
        return config.failed_keys_file
    return log_path.with_name(f"{log_path.stem}_failed.txt")


class RunController:
    def __init__(
        self,
        config: RunConfig,
        source: Optional[BlobSource] = None,
        store: Optional[ObjectStore] = None,
        stream: Optional[TextIO] = None,
        err_stream: Optional[TextIO] = None,
    ):
        self.config = config
        self.source = source
        self.store = store
        self.stream = stream or sys.stdout
        self.err_stream = err_stream or sys.stderr
        self.stats: Optional[RunStats] = None
        self.failures: List[RemediationOutcome] = []
        self.inventory_total: Optional[int] = None
        self.estimate: Optional[float] = None
        self.log_path: Optional[Path] = None

    def run(self) -> int:
        try:
            validate_config(self.config, has_source=self.source is not None)
            source = self.source if self.source is not None else build_source(self.config)
            self.log_path = self.config.log_file or default_log_path()
            logger = open_log_sink(self.log_path)
        except ConfigurationError as e:
            print(f"Error: {e}", file=self.err_stream)
            if e.usage:
                print(e.usage, file=self.err_stream)
            return EXIT_CONFIG

        try:
            reporter = ProgressReporter(
                logger,
                dry_run=self.config.dry_run,
                progress_interval=self.config.progress_interval,
                stream=self.stream,
            )
            return self._run(reporter, source)
        finally:
            close_log_sink(logger)

    # ----- stages -----

    def _header(self, reporter: ProgressReporter, source: BlobSource) -> None:
        cfg = self.config
        if cfg.dry_run:
            reporter.emit("DRY RUN MODE - No changes will be made")
            reporter.emit(f"Processing only {DRY_RUN_SAMPLE_SIZE} files as sample")
        else:
            reporter.emit("LIVE MODE - Changes will be applied to ALL files")
        reporter.emit(f"Mode: {cfg.mode}")
        reporter.emit(f"Bucket: {cfg.bucket}")
        reporter.emit(f"Region: {cfg.credentials.region or 'default'}")
        if cfg.environment:
            reporter.emit(f"Environment: {cfg.environment}")
        reporter.emit(f"AWS Access Key: {cfg.credentials.masked_access_key}")
        reporter.emit(f"Source: {source.describe()}")
        reporter.emit(f"Concurrency: {cfg.concurrency}")
        reporter.emit(f"Log file: {self.log_path}")
        reporter.emit(RULE)

    def _run(self, reporter: ProgressReporter, source: BlobSource) -> int:
        cfg = self.config
        try:
            self._header(reporter, source)
            self.inventory_total = source.count()
        except EnumerationError as e:
            reporter.emit(f"ERROR reading blob datastore: {e}", level=logging.ERROR)
            return EXIT_ENUMERATION

        reporter.emit(f"Total files in database: {fmt_count(self.inventory_total)}")
        reporter.inventory_total = self.inventory_total
        if cfg.dry_run:
            reporter.total = min(DRY_RUN_SAMPLE_SIZE, self.inventory_total)
        else:
            reporter.total = self.inventory_total

        store = self.store
        if store is None:
            store = S3ObjectStore(build_s3_client(cfg.credentials, cfg.concurrency), cfg.bucket)
        self.stats = RunStats()
        enumerator = Enumerator(source, batch_size=cfg.batch_size, dry_run=cfg.dry_run)
        status = EXIT_OK

        with RemediationPool(
            store,
            dry_run=cfg.dry_run,
            concurrency=cfg.concurrency,
            stats=self.stats,
            reporter=reporter,
        ) as pool:
            try:
                for batch in enumerator.batches():
                    pool.run_batch(batch)
            except KeyboardInterrupt:
                pool.cancel()
                reporter.emit("Interrupted: no new work will be dispatched, waiting for in-flight copies",
                              level=logging.WARNING)
                status = EXIT_INTERRUPTED
            except EnumerationError as e:
                reporter.emit(f"ERROR reading blob datastore: {e}", level=logging.ERROR)
                status = EXIT_ENUMERATION

        self.failures = list(pool.failures)
        self.estimate = reporter.summary(
            self.stats.snapshot(), log_path=self.log_path, interrupted=status == EXIT_INTERRUPTED
        )
        self._write_failures(reporter)
        return status

    def _write_failures(self, reporter: ProgressReporter) -> None:
        if not self.failures:
            return
        path = failed_keys_path(self.config, self.log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            for outcome in self.failures:
                fh.write(format_export_line(outcome.ref) + "\n")
        reporter.emit(f"Failed keys ({fmt_count(len(self.failures))}) written to: {path}")


def run(config: RunConfig, **kwargs) -> int:
    return RunController(config, **kwargs).run()
