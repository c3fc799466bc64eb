import logging
from typing import Callable, Dict, List, Optional, Tuple

from vexhub.models.models import Finding, MitigatedFinding

logger = logging.getLogger(__name__)


def _read_only_root_filesystem(pod_spec, container) -> bool:
    sec_ctx = container.security_context
    return bool(sec_ctx and sec_ctx.read_only_root_filesystem)


def _runs_as_non_root(pod_spec, container) -> bool:
    sec_ctx = container.security_context
    pod_sec_ctx = pod_spec.security_context

    # Container settings override the pod-level ones
    if sec_ctx and sec_ctx.run_as_user is not None:
        return sec_ctx.run_as_user != 0
    if sec_ctx and sec_ctx.run_as_non_root:
        return True
    if pod_sec_ctx and pod_sec_ctx.run_as_user is not None:
        return pod_sec_ctx.run_as_user != 0
    return bool(pod_sec_ctx and pod_sec_ctx.run_as_non_root)


def _privilege_escalation_blocked(pod_spec, container) -> bool:
    sec_ctx = container.security_context
    if not sec_ctx or sec_ctx.privileged:
        return False
    return sec_ctx.allow_privilege_escalation is False


def _capabilities_dropped(pod_spec, container) -> bool:
    sec_ctx = container.security_context
    if not sec_ctx or not sec_ctx.capabilities:
        return False
    dropped = [cap.upper() for cap in (sec_ctx.capabilities.drop or [])]
    return 'ALL' in dropped and not sec_ctx.capabilities.add


def _host_namespaces_isolated(pod_spec, container) -> bool:
    return not (pod_spec.host_network or pod_spec.host_pid or pod_spec.host_ipc)


CONTROLS: Dict[str, Callable] = {
    'read_only_root_filesystem': _read_only_root_filesystem,
    'run_as_non_root': _runs_as_non_root,
    'no_privilege_escalation': _privilege_escalation_blocked,
    'drop_all_capabilities': _capabilities_dropped,
    'host_namespace_isolation': _host_namespaces_isolated,
}

# Weakness classes and the hardening controls that neutralize them (any one suffices)
CWE_MITIGATIONS: Dict[str, Tuple[str, ...]] = {
    'CWE-22': ('read_only_root_filesystem',),    # Path traversal
    'CWE-23': ('read_only_root_filesystem',),    # Relative path traversal
    'CWE-73': ('read_only_root_filesystem',),    # External control of file name or path
    'CWE-434': ('read_only_root_filesystem',),   # Unrestricted upload of dangerous file type
    'CWE-494': ('read_only_root_filesystem',),   # Download of code without integrity check
    'CWE-250': ('run_as_non_root', 'drop_all_capabilities'),  # Execution with unnecessary privileges
    'CWE-269': ('no_privilege_escalation',),     # Improper privilege management
    'CWE-271': ('no_privilege_escalation',),     # Privilege dropping / lowering errors
    'CWE-273': ('no_privilege_escalation',),     # Improper check for dropped privileges
    'CWE-276': ('run_as_non_root',),             # Incorrect default permissions
    'CWE-732': ('run_as_non_root',),             # Incorrect permission assignment
    'CWE-668': ('host_namespace_isolation',),    # Exposure of resource to wrong sphere
}


class SecurityContextMitigation:
    """Decides mitigation from the pod and container securityContext.

    A finding counts as mitigated only when it names at least one CWE and
    every one of its CWEs is covered by a control in effect for the container.
    """

    def __init__(self, cwe_mitigations: Optional[Dict[str, Tuple[str, ...]]] = None):
        self.cwe_mitigations = cwe_mitigations if cwe_mitigations is not None else CWE_MITIGATIONS

    def is_mitigated(self, finding: Finding, pod_spec, container) -> bool:
        if not finding.cwes:
            return False

        for cwe in finding.cwes:
            controls = self.cwe_mitigations.get(cwe.strip().upper())
            if not controls:
                return False
            if not any(CONTROLS[name](pod_spec, container) for name in controls):
                return False
        return True


class MitigationFilter:
    """Applies a mitigation predicate to the findings of one container"""

    def __init__(self, predicate):
        self.predicate = predicate

    def filter(self, findings: List[Finding], pod_spec, container) -> List[MitigatedFinding]:
        mitigated = []
        for finding in findings:
            if self.predicate.is_mitigated(finding, pod_spec, container):
                logger.info(f"CVE {finding.id} is mitigated for image {container.image}")
                mitigated.append(MitigatedFinding(
                    finding=finding,
                    container_name=container.name,
                    image=container.image,
                ))
        return mitigated
