import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from s3_disposition_fix.config import RunConfig
from s3_disposition_fix.errors import ObjectNotFound, RemediationError
from s3_disposition_fix.models import StorageObjectRef
from s3_disposition_fix.store import Credentials


# -----------------------------
# Test doubles
# -----------------------------
class FakeSource:
    def __init__(self, refs: Iterable[StorageObjectRef]):
        self.refs = list(refs)
        self.count_calls = 0
        self.iter_calls = 0

    def describe(self) -> str:
        return "fake source"

    def count(self) -> int:
        self.count_calls += 1
        return len(self.refs)

    def iter_batches(self, batch_size: int, limit: Optional[int] = None):
        self.iter_calls += 1
        refs = self.refs if limit is None else self.refs[:limit]
        for i in range(0, len(refs), batch_size):
            yield refs[i:i + batch_size]


class RecordingStore:
    """In-memory object store: key -> stored metadata."""

    def __init__(self, keys: Iterable[str] = (), missing: Iterable[str] = (), failing: Iterable[str] = ()):
        self.objects: Dict[str, dict] = {k: {} for k in keys}
        self.missing = set(missing)
        self.failing = set(failing)
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def replace_metadata(self, key, content_type, content_disposition):
        with self._lock:
            self.calls.append((key, content_type, content_disposition))
        if key in self.missing:
            raise ObjectNotFound(key)
        if key in self.failing:
            raise RemediationError(key, "AccessDenied: Access Denied")
        with self._lock:
            self.objects[key] = {"ContentType": content_type, "ContentDisposition": content_disposition}


class BlockingStore(RecordingStore):
    """Holds every copy open until release is set; started fires on the first one."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def replace_metadata(self, key, content_type, content_disposition):
        self.started.set()
        self.release.wait(5)
        super().replace_metadata(key, content_type, content_disposition)


def interrupt_first_wait(monkeypatch, store: BlockingStore) -> None:
    """
    Make the pool's first futures.wait raise KeyboardInterrupt once a copy is
    in flight; later waits release the store and wait for real.
    """
    import concurrent.futures

    from s3_disposition_fix import worker

    real_wait = concurrent.futures.wait
    calls = []

    def fake_wait(fs, *args, **kwargs):
        calls.append(fs)
        if len(calls) == 1:
            assert store.started.wait(5)
            raise KeyboardInterrupt
        store.release.set()
        return real_wait(fs, *args, **kwargs)

    monkeypatch.setattr(worker.futures, "wait", fake_wait)


# -----------------------------
# Helpers
# -----------------------------
def make_refs(n: int) -> List[StorageObjectRef]:
    refs = []
    for i in range(n):
        if i % 3 == 0:
            refs.append(StorageObjectRef(key=f"key-{i}", display_name=f"photo-{i}.jpg", content_type="image/jpeg"))
        else:
            refs.append(StorageObjectRef(key=f"key-{i}", display_name=f"doc-{i}.pdf", content_type="application/pdf"))
    return refs


@pytest.fixture
def inventory() -> List[StorageObjectRef]:
    return [
        StorageObjectRef(key="a", display_name="pic.png", content_type="image/png"),
        StorageObjectRef(key="b", display_name="doc.pdf", content_type="application/pdf"),
    ]


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(**overrides) -> RunConfig:
        values = dict(
            bucket="test-bucket",
            credentials=Credentials(access_key="AKIAEXAMPLEKEY00", secret_key="secret", region="eu-south-2"),
            concurrency=4,
            batch_size=2,
            log_file=tmp_path / "run.log",
        )
        values.update(overrides)
        return RunConfig(**values)

    return _make
