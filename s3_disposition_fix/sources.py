"""
Blob sources.

A source knows how to count the blob inventory and how to page through it in
a stable order. Two are provided:

  . SqlBlobSource reads the active_storage_blobs table through SQLAlchemy,
    using keyset pagination on the primary key (id > last ORDER BY id).
  . ExportFileSource reads a "key|filename|content_type" export, one blob per
    line. The failed-keys file written at the end of a run uses the same
    format, so a partial run can be re-driven from it.

Enumerator wraps a source with the batch size and the dry-run sample limit.
"""

import itertools
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError

from .errors import ConfigurationError, EnumerationError
from .models import StorageObjectRef

DEFAULT_BATCH_SIZE = 1000
DRY_RUN_SAMPLE_SIZE = 5
EXPORT_SEPARATOR = "|"

# Characters the application replaces when it hands out a stored filename.
_FILENAME_REPLACEMENTS = str.maketrans({ch: "-" for ch in "\u202e%$|:;/\t\r\n\\"})


def sanitize_filename(raw: Optional[str]) -> str:
    return (raw or "").strip().translate(_FILENAME_REPLACEMENTS)


class BlobSource(Protocol):
    def count(self) -> int: ...

    def iter_batches(self, batch_size: int, limit: Optional[int] = None) -> Iterator[List[StorageObjectRef]]: ...

    def describe(self) -> str: ...


# -----------------------------
# SQL datastore
# -----------------------------

metadata = MetaData()

blobs_table = Table(
    "active_storage_blobs",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("key", String, nullable=False),
    Column("filename", String, nullable=False),
    Column("content_type", String),
)


class SqlBlobSource:
    def __init__(self, engine: Engine, table: Table = blobs_table):
        self.engine = engine
        self.table = table

    @classmethod
    def from_url(cls, database_url: str) -> "SqlBlobSource":
        """Build the engine without connecting. URL and driver problems are configuration errors."""
        scheme = database_url.partition("://")[0] or database_url
        try:
            engine = create_engine(database_url)
        except NoSuchModuleError as e:
            raise ConfigurationError(f"unsupported database dialect {scheme!r}: {e}") from e
        except ImportError as e:
            raise ConfigurationError(
                f"database driver {e.name or e} for {scheme!r} is not installed "
                f"(pip install 's3-disposition-fix[postgres]' for PostgreSQL)"
            ) from e
        except (ArgumentError, ValueError) as e:
            raise ConfigurationError(f"invalid database URL for {scheme!r}: {e}") from e
        except SQLAlchemyError as e:
            raise EnumerationError(f"cannot open database {scheme!r}: {e}") from e
        return cls(engine)

    def describe(self) -> str:
        return f"database {self.engine.url.render_as_string(hide_password=True)}"

    def count(self) -> int:
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(select(func.count()).select_from(self.table)).scalar_one())
        except SQLAlchemyError as e:
            raise EnumerationError(f"blob count failed: {e}") from e

    def iter_batches(self, batch_size: int, limit: Optional[int] = None) -> Iterator[List[StorageObjectRef]]:
        t = self.table
        last_id = None
        remaining = limit
        while remaining is None or remaining > 0:
            size = batch_size if remaining is None else min(batch_size, remaining)
            stmt = select(t.c.id, t.c.key, t.c.filename, t.c.content_type).order_by(t.c.id).limit(size)
            if last_id is not None:
                stmt = stmt.where(t.c.id > last_id)
            try:
                with self.engine.connect() as conn:
                    rows = conn.execute(stmt).all()
            except SQLAlchemyError as e:
                raise EnumerationError(f"blob page after id={last_id} failed: {e}") from e
            if not rows:
                return
            last_id = rows[-1].id
            if remaining is not None:
                remaining -= len(rows)
            yield [
                StorageObjectRef(key=r.key, display_name=sanitize_filename(r.filename), content_type=r.content_type)
                for r in rows
            ]
            if len(rows) < size:
                return


# -----------------------------
# Export file
# -----------------------------

def parse_export_line(line: str) -> StorageObjectRef:
    """Filenames may contain the separator; keys and content types cannot."""
    key, sep, rest = line.partition(EXPORT_SEPARATOR)
    if not sep or EXPORT_SEPARATOR not in rest or not key:
        raise ValueError(f"expected key|filename|content_type, got {line!r}")
    filename, _, content_type = rest.rpartition(EXPORT_SEPARATOR)
    return StorageObjectRef(key=key, display_name=filename, content_type=content_type or None)


def format_export_line(ref: StorageObjectRef) -> str:
    return EXPORT_SEPARATOR.join([ref.key, ref.display_name, ref.content_type or ""])


class ExportFileSource:
    def __init__(self, path: Path):
        self.path = Path(path)

    def describe(self) -> str:
        return f"export file {self.path}"

    def _lines(self) -> Iterator[str]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                for line in fh:
                    line = line.rstrip("\r\n")
                    if line.strip():
                        yield line
        except OSError as e:
            raise EnumerationError(f"cannot read {self.path}: {e}") from e

    def count(self) -> int:
        return sum(1 for _ in self._lines())

    def iter_batches(self, batch_size: int, limit: Optional[int] = None) -> Iterator[List[StorageObjectRef]]:
        lines = enumerate(self._lines(), start=1)
        if limit is not None:
            lines = itertools.islice(lines, limit)
        batch: List[StorageObjectRef] = []
        for lineno, line in lines:
            try:
                batch.append(parse_export_line(line))
            except ValueError as e:
                raise EnumerationError(f"{self.path}:{lineno}: {e}") from e
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch


# -----------------------------
# Enumerator
# -----------------------------

class Enumerator:
    """
    Single-pass view over a source. Every call to produce() or batches()
    opens a fresh cursor.
    """

    def __init__(self, source: BlobSource, batch_size: int = DEFAULT_BATCH_SIZE, dry_run: bool = False):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.source = source
        self.batch_size = batch_size
        self.dry_run = dry_run

    @property
    def limit(self) -> Optional[int]:
        return DRY_RUN_SAMPLE_SIZE if self.dry_run else None

    def batches(self) -> Iterator[List[StorageObjectRef]]:
        seen = 0
        for batch in self.source.iter_batches(self.batch_size, limit=self.limit):
            if self.limit is not None:
                batch = batch[: self.limit - seen]
            if not batch:
                return
            seen += len(batch)
            yield batch
            if self.limit is not None and seen >= self.limit:
                return

    def produce(self) -> Iterator[StorageObjectRef]:
        for batch in self.batches():
            yield from batch
