"""
Prometheus counters for the allocation engine.

Exposed by the API at /metrics.
"""

from prometheus_client import Counter

ALLOCATIONS_CREATED = Counter(
    "staffplan_allocations_created_total",
    "Allocations persisted by the lifecycle manager",
    ["mode"],
)

CONFLICTS_DETECTED = Counter(
    "staffplan_conflicts_detected_total",
    "Overlapping live allocations found by the conflict detector",
)

OVER_ALLOCATION_WARNINGS = Counter(
    "staffplan_over_allocation_warnings_total",
    "Weekly over-allocation warnings emitted by the analyzer",
    ["severity"],
)

LIFECYCLE_TRANSITIONS = Counter(
    "staffplan_lifecycle_transitions_total",
    "Allocation status transitions",
    ["to"],
)
