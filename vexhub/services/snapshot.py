import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from vexhub.models.models import Index
from vexhub.vex.openvex import VexDocument


@dataclass(frozen=True)
class Snapshot:
    """A canonical document and the index derived from it, published together"""
    document: VexDocument
    index: Index
    generation: int = 0
    fragment_count: int = 0


def empty_snapshot() -> Snapshot:
    return Snapshot(
        document=VexDocument(),
        index=Index(updated_at=datetime.fromtimestamp(0, timezone.utc), packages=[]),
    )


@dataclass
class SnapshotStore:
    """Holds the published snapshot.

    Snapshots are never mutated after publication, so a reader only needs
    the lock to take the reference; serializing happens outside of it and
    always sees one generation.
    """
    _snapshot: Snapshot = field(default_factory=empty_snapshot)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def current(self) -> Snapshot:
        with self._lock:
            return self._snapshot

    def publish(self, snapshot: Snapshot) -> Snapshot:
        with self._lock:
            self._snapshot = snapshot
            return snapshot
