import logging
from typing import List

from kubernetes.client.rest import ApiException

from vexhub.models.models import ContainerRef, MitigatedFinding, WorkloadRef
from vexhub.services.finding_matcher import FindingMatcher, FindingRetrievalError, extract_findings
from vexhub.services.mitigation import MitigationFilter
from vexhub.services.vex_emitter import VEXEmitter

logger = logging.getLogger(__name__)


def workload_from_pod(pod) -> WorkloadRef:
    containers = [
        ContainerRef(name=container.name, image=container.image)
        for container in (pod.spec.containers or [])
    ]
    return WorkloadRef(
        namespace=pod.metadata.namespace,
        name=pod.metadata.name,
        uid=pod.metadata.uid or "",
        phase=pod.status.phase if pod.status else None,
        containers=containers,
    )


class PodVEXReconciler:
    """Brings one pod's VEX fragment in line with its current mitigations.

    Errors talking to the API server are raised so the caller can re-queue
    the pod; a missing report or an unmitigated pod is a normal outcome.
    """

    def __init__(self, core_api, matcher: FindingMatcher, mitigation_filter: MitigationFilter,
                 emitter: VEXEmitter):
        self.v1 = core_api
        self.matcher = matcher
        self.mitigation_filter = mitigation_filter
        self.emitter = emitter

    def reconcile(self, namespace: str, name: str):
        logger.info(f"Reconciling pod {namespace}/{name}")

        try:
            pod = self.v1.read_namespaced_pod(name, namespace)
        except ApiException as e:
            if e.status == 404:
                # Pod deleted, its fragment goes with it
                self.emitter.remove(WorkloadRef(namespace=namespace, name=name))
                return
            logger.error(f"Failed to get Pod {namespace}/{name}: {e.status} {e.reason}")
            raise

        workload = workload_from_pod(pod)
        if not workload.is_active:
            logger.info(f"Pod {namespace}/{name} not in Running or Pending phase ({workload.phase})")
            self.emitter.remove(workload)
            return

        mitigated = self.collect_mitigations(pod)
        self.emitter.emit(workload, mitigated)

    def collect_mitigations(self, pod) -> List[MitigatedFinding]:
        """Mitigated findings across every container of the pod"""
        namespace = pod.metadata.namespace
        total: List[MitigatedFinding] = []
        failed_images = []

        for container in pod.spec.containers or []:
            logger.info(f"Processing container {container.name} with image {container.image}")
            try:
                report = self.matcher.find_report(namespace, container.image)
            except FindingRetrievalError as e:
                logger.error(f"Failed to find VulnerabilityReport for image {container.image}: {e}")
                failed_images.append(container.image)
                continue

            if report is None:
                logger.info(f"No VulnerabilityReport found for image {container.image}")
                continue

            findings = extract_findings(report)
            logger.info(f"Extracted {len(findings)} CVEs for image {container.image}")
            total.extend(self.mitigation_filter.filter(findings, pod.spec, container))

        # A partial fragment would drop findings, so retry the whole pod instead
        if failed_images:
            raise FindingRetrievalError(
                f"could not look up findings for {', '.join(failed_images)}"
            )
        return total
