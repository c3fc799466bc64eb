"""
OpenVEX document model plus the operations the hub needs from it:
generate, parse, serialize, merge and product enumeration.

Merging is order-independent: statements are grouped on their
(vulnerability, status, justification) identity, products are unioned and
everything is sorted, and the merged document id is a hash of that content.
"""
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vexhub.models.models import MitigatedFinding

OPENVEX_CONTEXT = "https://openvex.dev/ns/v0.2.0"
DOCUMENT_ID_PREFIX = "https://openvex.dev/docs/public/vex-"

STATUS_NOT_AFFECTED = "not_affected"
JUSTIFICATION_INLINE_MITIGATIONS = "inline_mitigations_already_exist"


class VexParseError(ValueError):
    """Raised when a serialized fragment is not a valid OpenVEX document"""


@dataclass(frozen=True)
class VexInfo:
    author: str
    role: str
    tooling: str


class Vulnerability(BaseModel):
    name: str


class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="@id")
    identifiers: Dict[str, str] = {}


class Statement(BaseModel):
    vulnerability: Vulnerability
    products: List[Product] = []
    status: str
    justification: Optional[str] = None
    impact_statement: Optional[str] = None
    action_statement: Optional[str] = None
    timestamp: Optional[str] = None


class VexDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    context: str = Field(default=OPENVEX_CONTEXT, alias="@context")
    id: str = Field(default="", alias="@id")
    author: str = ""
    role: Optional[str] = None
    timestamp: Optional[str] = None
    version: int = 1
    tooling: Optional[str] = None
    statements: List[Statement] = []


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """RFC3339 UTC timestamp with second precision"""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def generate_vex(mitigated: Iterable[MitigatedFinding], info: VexInfo,
                 timestamp: Optional[str] = None) -> VexDocument:
    """Build a not_affected statement for every mitigated (CVE, package) pair"""
    statements = []
    seen = set()
    for item in mitigated:
        finding = item.finding
        if (finding.id, finding.purl) in seen:
            continue
        seen.add((finding.id, finding.purl))
        statements.append(Statement(
            vulnerability=Vulnerability(name=finding.id),
            products=[Product(id=finding.purl, identifiers={"purl": finding.purl})],
            status=STATUS_NOT_AFFECTED,
            justification=JUSTIFICATION_INLINE_MITIGATIONS,
        ))

    document = VexDocument(
        author=info.author,
        role=info.role,
        timestamp=timestamp or utc_timestamp(),
        tooling=info.tooling,
        statements=statements,
    )
    # Same findings give the same id, whenever they are generated
    document.id = DOCUMENT_ID_PREFIX + content_digest(document)
    return document


def parse_document(data) -> VexDocument:
    try:
        return VexDocument.model_validate_json(data)
    except ValidationError as e:
        raise VexParseError(f"invalid OpenVEX document: {e.error_count()} validation error(s)") from e


def document_dict(document: VexDocument) -> dict:
    return document.model_dump(by_alias=True, exclude_none=True)


def serialize_document(document: VexDocument) -> bytes:
    return json.dumps(document_dict(document), indent=2).encode("utf-8")


def _statement_key(statement: Statement):
    return (
        statement.vulnerability.name,
        statement.status,
        statement.justification or "",
        statement.impact_statement or "",
        statement.action_statement or "",
    )


def merge_documents(documents: Iterable[VexDocument], info: VexInfo,
                    timestamp: Optional[str] = None) -> VexDocument:
    """Merge documents into one, deduplicating statements and products.

    Per-statement timestamps are dropped so the merged content depends only
    on what the fragments assert, not on when they were written.
    """
    grouped: Dict[tuple, Dict[str, Product]] = {}
    templates: Dict[tuple, Statement] = {}

    for document in documents:
        for statement in document.statements:
            key = _statement_key(statement)
            templates.setdefault(key, statement)
            products = grouped.setdefault(key, {})
            for product in statement.products:
                existing = products.get(product.id)
                if existing is None:
                    products[product.id] = Product(id=product.id, identifiers=dict(product.identifiers))
                else:
                    # identifiers are merged, first writer wins per identifier type
                    for kind, value in product.identifiers.items():
                        existing.identifiers.setdefault(kind, value)

    statements = []
    for key in sorted(grouped):
        template = templates[key]
        products = [grouped[key][pid] for pid in sorted(grouped[key])]
        for product in products:
            product.identifiers = dict(sorted(product.identifiers.items()))
        statements.append(Statement(
            vulnerability=Vulnerability(name=template.vulnerability.name),
            products=products,
            status=template.status,
            justification=template.justification,
            impact_statement=template.impact_statement,
            action_statement=template.action_statement,
        ))

    merged = VexDocument(
        author=info.author,
        role=info.role,
        tooling=info.tooling,
        timestamp=timestamp,
        statements=statements,
    )
    merged.id = DOCUMENT_ID_PREFIX + content_digest(merged)
    return merged


def content_digest(document: VexDocument) -> str:
    """sha256 over everything except the document id and timestamp"""
    payload = document.model_dump(by_alias=True, exclude_none=True, exclude={"id", "timestamp"})
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def document_purls(document: VexDocument) -> List[str]:
    """Package URLs of every product referenced by the document's statements"""
    purls = []
    for statement in document.statements:
        for product in statement.products:
            purl = product.identifiers.get("purl") or product.id
            if purl:
                purls.append(purl)
    return purls


class OpenVEXFormat:
    """Document operations used by the aggregator, injectable for tests"""

    name = "openvex"

    def __init__(self, info: VexInfo):
        self.info = info

    def parse(self, data) -> VexDocument:
        return parse_document(data)

    def merge(self, documents: List[VexDocument], timestamp: Optional[str] = None) -> VexDocument:
        return merge_documents(documents, self.info, timestamp)

    def purls(self, document: VexDocument) -> List[str]:
        return document_purls(document)

    def same_content(self, left: VexDocument, right: VexDocument) -> bool:
        return content_digest(left) == content_digest(right)
