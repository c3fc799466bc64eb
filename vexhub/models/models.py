from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime

# Pod phases in which a workload still owns a fragment
ACTIVE_PHASES = ("Running", "Pending")


class ContainerRef(BaseModel):
    name: str
    image: str


class WorkloadRef(BaseModel):
    """Identity of a running pod as seen by the reconciler"""
    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    uid: str = ""
    phase: Optional[str] = None
    containers: List[ContainerRef] = []

    @property
    def key(self) -> str:
        # Namespaces are DNS labels, so the first '.' always separates the two parts
        return f"{self.namespace}.{self.name}"

    @property
    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str  # e.g., "CVE-2024-12345"
    purl: str
    cwes: List[str] = []


class MitigatedFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    finding: Finding
    container_name: str
    image: str


class PackageInfo(BaseModel):
    id: str
    location: str
    format: str = "openvex"  # "openvex" or "csaf"


class Index(BaseModel):
    updated_at: datetime
    packages: List[PackageInfo] = []


class Location(BaseModel):
    url: str


class Version(BaseModel):
    spec_version: str
    locations: List[Location]
    update_interval: str


class VEXRepository(BaseModel):
    """Manifest served at /.well-known/vex-repository.json"""
    name: str
    description: str
    versions: List[Version] = Field(default_factory=list)
