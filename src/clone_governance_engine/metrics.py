"""Prometheus metrics for the governance engine.

Metrics live on a dedicated CollectorRegistry so the engine can be embedded
in another process (or imported repeatedly by tests) without clashing with
the default global registry.

Labels are low cardinality only: kinds, outcomes, severities, collections.
Never label by actor or resource name.
"""

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

REGISTRY = CollectorRegistry()

RECORDINGS_TOTAL = Counter(
    "clone_governance_recordings_total",
    "Audit and access recordings by outcome",
    ["record_type", "outcome"],
    registry=REGISTRY,
)

EVALUATION_SKIPS_TOTAL = Counter(
    "clone_governance_evaluation_skips_total",
    "Policies skipped during evaluation because they could not be evaluated",
    ["policy_kind"],
    registry=REGISTRY,
)

VIOLATIONS_DETECTED_TOTAL = Counter(
    "clone_governance_violations_detected_total",
    "Violations persisted, by severity and detection source",
    ["severity", "source"],
    registry=REGISTRY,
)

BLOCKED_OPERATIONS_TOTAL = Counter(
    "clone_governance_blocked_operations_total",
    "Governed create operations refused by a blocking policy",
    registry=REGISTRY,
)

PURGED_RECORDS_TOTAL = Counter(
    "clone_governance_purged_records_total",
    "Rows deleted by the retention purger",
    ["collection"],
    registry=REGISTRY,
)


def render_latest() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
