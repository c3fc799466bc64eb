"""
Centralized Prometheus metrics registry for the VEX hub.

All metric objects are defined here. Other modules import and
increment/observe/set these objects at instrumentation points.
"""
from prometheus_client import Counter, Gauge

# Reconciliation Metrics
RECONCILES_TOTAL = Counter(
    "vexhub_reconciles_total",
    "Total pod reconciliations by outcome",
    ["outcome"],
)

FRAGMENT_WRITES_TOTAL = Counter(
    "vexhub_fragment_writes_total",
    "Fragment store mutations by operation",
    ["operation"],
)

# Aggregation Metrics
AGGREGATION_CYCLES_TOTAL = Counter(
    "vexhub_aggregation_cycles_total",
    "Aggregation cycles by outcome",
    ["outcome"],
)

AGGREGATION_DURATION_SECONDS = Gauge(
    "vexhub_aggregation_duration_seconds",
    "Duration of the last aggregation cycle in seconds",
)

PUBLISHED_PACKAGES = Gauge(
    "vexhub_published_packages",
    "Number of packages listed in the published index",
)

PUBLISHED_FRAGMENTS = Gauge(
    "vexhub_published_fragments",
    "Number of fragments merged into the published document",
)
