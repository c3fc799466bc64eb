import pytest
from typing import Dict, List
from kubernetes import client

from vexhub.config import Config
from vexhub.models.models import Finding, MitigatedFinding
from vexhub.services.fragment_store import FragmentStore, FragmentStoreError
from vexhub.services.snapshot import SnapshotStore
from vexhub.vex.openvex import OpenVEXFormat, VexInfo


class FakeFragmentStore(FragmentStore):
    """In-memory fragment store recording every mutation"""

    def __init__(self, fragments: Dict[str, str] = None):
        self.fragments = dict(fragments or {})
        self.mutations: List[tuple] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise FragmentStoreError("store unavailable")

    def put(self, key, value, unchanged=None):
        self._check()
        existing = self.fragments.get(key)
        if existing == value or (existing is not None and unchanged and unchanged(existing)):
            return False
        self.mutations.append(("put", key))
        self.fragments[key] = value
        return True

    def delete(self, key):
        self._check()
        if key not in self.fragments:
            return False
        self.mutations.append(("delete", key))
        del self.fragments[key]
        return True

    def list_fragments(self):
        self._check()
        return dict(self.fragments)


class AlwaysMitigated:
    def is_mitigated(self, finding, pod_spec, container):
        return True


class NeverMitigated:
    def is_mitigated(self, finding, pod_spec, container):
        return False


def make_pod(name="test-pod", namespace="default", phase="Running", images=("nginx:1.21",),
             security_context=None, pod_security_context=None, host_network=None):
    containers = [
        client.V1Container(name=f"c{i}", image=image, security_context=security_context)
        for i, image in enumerate(images)
    ]
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, uid=f"uid-{name}"),
        spec=client.V1PodSpec(
            containers=containers,
            security_context=pod_security_context,
            host_network=host_network,
        ),
        status=client.V1PodStatus(phase=phase),
    )


def make_report(repository, vulnerabilities, name=None, labels=None):
    """VulnerabilityReport object as returned by the custom objects API"""
    return {
        "apiVersion": "storage.sbomscanner.kubewarden.io/v1alpha1",
        "kind": "VulnerabilityReport",
        "metadata": {"name": name or f"report-{repository}", "labels": labels or {}},
        "imageMetadata": {"repository": repository},
        "report": {"results": [{"vulnerabilities": vulnerabilities}]},
    }


def make_vuln(cve, purl, cwes=("CWE-22",)):
    return {"cve": cve, "purl": purl, "cwes": list(cwes)}


def mitigated(cve, purl, container="c0", image="nginx:1.21"):
    return MitigatedFinding(
        finding=Finding(id=cve, purl=purl, cwes=["CWE-22"]),
        container_name=container,
        image=image,
    )


@pytest.fixture
def vex_info():
    return VexInfo(author="vex8s-controller", role="Kubernetes Controller", tooling="vex8s")


@pytest.fixture
def document_format(vex_info):
    return OpenVEXFormat(vex_info)


@pytest.fixture
def fragment_store():
    return FakeFragmentStore()


@pytest.fixture
def snapshots():
    return SnapshotStore()


@pytest.fixture
def app_config(monkeypatch):
    monkeypatch.delenv('VEXHUB_UPDATE_INTERVAL', raising=False)
    monkeypatch.delenv('VEXHUB_STORE_NAME', raising=False)
    return Config()
