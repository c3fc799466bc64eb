import logging
from typing import Any, Dict, List, Optional

from kubernetes.client.rest import ApiException

from vexhub.models.models import Finding
from vexhub.services.image_utils import normalize_image_name

logger = logging.getLogger(__name__)


class FindingRetrievalError(Exception):
    """VulnerabilityReports could not be listed; the reconcile should be retried"""


class FindingMatcher:
    """Looks up the sbomscanner VulnerabilityReport belonging to a container image."""

    def __init__(self, custom_api, group: str, version: str, plural: str):
        self.custom_api = custom_api
        self.group = group
        self.version = version
        self.plural = plural

    def list_reports(self, namespace: str) -> List[Dict[str, Any]]:
        try:
            response = self.custom_api.list_namespaced_custom_object(
                self.group, self.version, namespace, self.plural
            )
        except ApiException as e:
            raise FindingRetrievalError(
                f"failed to list VulnerabilityReports in {namespace}: {e.status} {e.reason}"
            ) from e
        return response.get('items', [])

    def find_report(self, namespace: str, image: str) -> Optional[Dict[str, Any]]:
        """Return the first report whose repository matches the image, or None"""
        reports = self.list_reports(namespace)
        target = normalize_image_name(image)

        for report in reports:
            report_name = report.get('metadata', {}).get('name', 'unknown')

            repository = (report.get('imageMetadata') or {}).get('repository')
            if repository and normalize_image_name(repository) == target:
                logger.info(f"Found matching VulnerabilityReport {report_name} for image {image}")
                return report

            labels = report.get('metadata', {}).get('labels') or {}
            report_image = labels.get('image')
            if report_image and normalize_image_name(report_image) == target:
                logger.info(f"Found matching VulnerabilityReport {report_name} via label for image {image}")
                return report

        return None


def extract_findings(report: Dict[str, Any]) -> List[Finding]:
    """Flatten report.results[].vulnerabilities[] into Finding objects"""
    findings = []
    results = (report.get('report') or {}).get('results') or []
    for result in results:
        for vuln in result.get('vulnerabilities') or []:
            findings.append(Finding(
                id=vuln.get('cve', ''),
                purl=vuln.get('purl', ''),
                cwes=list(vuln.get('cwes') or []),
            ))
    return findings
