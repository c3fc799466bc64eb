import threading
from datetime import datetime, timedelta, timezone

from vexhub.models.models import Index
from vexhub.services.archive import build_archive
from vexhub.services.snapshot import Snapshot, SnapshotStore
from vexhub.vex.openvex import VexDocument, utc_timestamp


def snapshot_for(generation: int) -> Snapshot:
    moment = datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=generation)
    return Snapshot(
        document=VexDocument(author="test", timestamp=utc_timestamp(moment)),
        index=Index(updated_at=moment, packages=[]),
        generation=generation,
    )


class TestSnapshotStore:

    def test_starts_empty(self):
        snapshot = SnapshotStore().current()
        assert snapshot.generation == 0
        assert snapshot.index.packages == []
        assert snapshot.document.statements == []

    def test_publish_swaps_pair(self):
        store = SnapshotStore()
        published = store.publish(snapshot_for(1))
        assert store.current() is published

    def test_readers_never_see_mixed_generations(self):
        store = SnapshotStore()
        store.publish(snapshot_for(1))
        stop = threading.Event()
        mismatches = []

        def writer():
            generation = 2
            while not stop.is_set():
                store.publish(snapshot_for(generation))
                generation += 1

        def reader():
            for _ in range(300):
                snapshot = store.current()
                build_archive(snapshot, "vex8s.json")
                if snapshot.document.timestamp != utc_timestamp(snapshot.index.updated_at):
                    mismatches.append(snapshot.generation)

        writer_thread = threading.Thread(target=writer)
        readers = [threading.Thread(target=reader) for _ in range(4)]
        writer_thread.start()
        for thread in readers:
            thread.start()
        for thread in readers:
            thread.join()
        stop.set()
        writer_thread.join()

        assert mismatches == []
