import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from vexhub.models.models import Index, PackageInfo
from vexhub.services.fragment_store import FragmentStore, FragmentStoreError
from vexhub.services.prometheus_metrics import (
    AGGREGATION_CYCLES_TOTAL, AGGREGATION_DURATION_SECONDS,
    PUBLISHED_FRAGMENTS, PUBLISHED_PACKAGES,
)
from vexhub.services.snapshot import Snapshot, SnapshotStore
from vexhub.vex.openvex import VexParseError, utc_timestamp

logger = logging.getLogger(__name__)


class AggregationError(Exception):
    """An aggregation cycle failed; the previous snapshot stays published"""


def purl_clean(purl: str) -> str:
    """Drop the version and anything after it from a package URL"""
    return purl.split('@', 1)[0]


def build_index(purls: Iterable[str], location: str, document_format: str,
                updated_at: datetime) -> Index:
    packages = {}
    for purl in purls:
        package_id = purl_clean(purl)
        if package_id and package_id not in packages:
            packages[package_id] = PackageInfo(id=package_id, location=location, format=document_format)
    return Index(
        updated_at=updated_at,
        packages=[packages[package_id] for package_id in sorted(packages)],
    )


class FragmentAggregator:
    """Periodically merges every stored fragment into the published snapshot"""

    def __init__(self, store: FragmentStore, snapshots: SnapshotStore, document_format,
                 location: str, interval: int = 15):
        self.store = store
        self.snapshots = snapshots
        self.document_format = document_format
        self.location = location
        self.interval = interval
        # Guards against overlapping cycles
        self._cycle_lock = threading.Lock()

    def refresh(self) -> Optional[Snapshot]:
        """Run one aggregation cycle.

        Returns the snapshot that is live afterwards, or None if another
        cycle was already running. Raises AggregationError on failure, in
        which case nothing is published.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Aggregation cycle already in progress, skipping")
            AGGREGATION_CYCLES_TOTAL.labels(outcome="skipped").inc()
            return None

        started = time.monotonic()
        try:
            snapshot = self._rebuild()
        except AggregationError:
            AGGREGATION_CYCLES_TOTAL.labels(outcome="failed").inc()
            raise
        finally:
            AGGREGATION_DURATION_SECONDS.set(time.monotonic() - started)
            self._cycle_lock.release()

        AGGREGATION_CYCLES_TOTAL.labels(outcome="succeeded").inc()
        return snapshot

    def _parse_all(self, fragments) -> List:
        documents = []
        # Fixed key order keeps the merge input deterministic
        for key in sorted(fragments):
            try:
                documents.append(self.document_format.parse(fragments[key]))
            except VexParseError as e:
                raise AggregationError(f"failed to parse VEX fragment {key}: {e}") from e
        return documents

    def _rebuild(self) -> Snapshot:
        try:
            fragments = self.store.list_fragments()
        except FragmentStoreError as e:
            raise AggregationError(f"failed to read VEX fragments: {e}") from e

        documents = self._parse_all(fragments)
        try:
            merged = self.document_format.merge(documents)
        except ValueError as e:
            raise AggregationError(f"failed to merge VEX fragments: {e}") from e

        current = self.snapshots.current()
        if current.generation > 0 and self.document_format.same_content(merged, current.document):
            logger.debug(f"VEX content unchanged, keeping generation {current.generation}")
            return current

        # Document and index carry the same rebuild instant
        rebuilt_at = datetime.now(timezone.utc).replace(microsecond=0)
        merged.timestamp = utc_timestamp(rebuilt_at)
        index = build_index(
            self.document_format.purls(merged), self.location,
            self.document_format.name, rebuilt_at,
        )

        snapshot = self.snapshots.publish(Snapshot(
            document=merged,
            index=index,
            generation=current.generation + 1,
            fragment_count=len(fragments),
        ))
        PUBLISHED_PACKAGES.set(len(index.packages))
        PUBLISHED_FRAGMENTS.set(len(fragments))
        logger.info(
            f"Published VEX generation {snapshot.generation}: {len(fragments)} fragment(s), "
            f"{len(merged.statements)} statement(s), {len(index.packages)} package(s)"
        )
        return snapshot

    async def run(self):
        """Refresh forever at a fixed rate; failures keep the old snapshot"""
        loop = asyncio.get_running_loop()
        logger.info(f"Starting VEX aggregation every {self.interval}s")
        while True:
            started = loop.time()
            try:
                await loop.run_in_executor(None, self.refresh)
            except AggregationError as e:
                logger.error(f"Failed to update VEX repository: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in aggregation loop: {e}")
            # Fixed rate: the cycle's own duration counts against the interval
            await asyncio.sleep(max(0.0, self.interval - (loop.time() - started)))
