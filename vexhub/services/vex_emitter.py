import logging
from typing import List

from vexhub.models.models import MitigatedFinding, WorkloadRef
from vexhub.services.fragment_store import FragmentStore
from vexhub.services.prometheus_metrics import FRAGMENT_WRITES_TOTAL
from vexhub.vex.openvex import (
    VexDocument, VexInfo, VexParseError, content_digest, generate_vex, parse_document, serialize_document,
)

logger = logging.getLogger(__name__)


def same_fragment(existing: str, document: VexDocument) -> bool:
    """True when a stored fragment asserts exactly what document asserts"""
    try:
        return content_digest(parse_document(existing)) == content_digest(document)
    except VexParseError:
        return False


class VEXEmitter:
    """Keeps one workload's fragment in sync with its mitigation state.

    Store errors are not caught here: the reconciliation driver re-queues
    the workload and tries again later.
    """

    def __init__(self, store: FragmentStore, info: VexInfo):
        self.store = store
        self.info = info

    def emit(self, workload: WorkloadRef, mitigated: List[MitigatedFinding]) -> bool:
        """Upsert the workload's fragment; returns True when the store was written"""
        if not workload.is_active:
            self.remove(workload)
            return False

        if not mitigated:
            logger.info(f"No mitigations have been found for pod {workload.namespace}/{workload.name}")
            return False

        document = generate_vex(mitigated, self.info)
        content = serialize_document(document).decode("utf-8")
        # Only the generation timestamp differs between equivalent fragments
        written = self.store.put(
            workload.key, content, unchanged=lambda existing: same_fragment(existing, document)
        )
        if not written:
            logger.debug(f"VEX fragment for pod {workload.namespace}/{workload.name} is up to date")
            return False

        FRAGMENT_WRITES_TOTAL.labels(operation="put").inc()
        logger.info(
            f"Saved VEX fragment for pod {workload.namespace}/{workload.name} "
            f"with {len(document.statements)} statement(s)"
        )
        return True

    def remove(self, workload: WorkloadRef) -> bool:
        """Drop the workload's fragment; a missing fragment is not an error"""
        removed = self.store.delete(workload.key)
        if removed:
            FRAGMENT_WRITES_TOTAL.labels(operation="delete").inc()
            logger.info(f"Removed VEX fragment for inactive pod {workload.namespace}/{workload.name}")
        return removed
