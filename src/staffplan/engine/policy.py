"""
Capacity policy: the tunable thresholds every engine component reads.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from staffplan.platform.config import Settings, settings as default_settings


class Severity(str, Enum):
    """Over-allocation severity, ordered low -> critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class EnforcementMode(str, Enum):
    """
    How create/update treat the conflict and capacity checks.

    CHECKED raises on hard conflicts and reports capacity as warnings,
    STRICT also raises when capacity is exceeded, FORCE never raises.
    """
    CHECKED = "checked"
    STRICT = "strict"
    FORCE = "force"


@dataclass(frozen=True)
class CapacityPolicy:
    default_weekly_capacity_hours: float = 40.0
    high_utilization_threshold: float = 80.0
    over_allocation_threshold: float = 100.0
    underutilized_threshold: float = 70.0
    max_allocation_hours: float = 1000.0
    severity_medium_ratio: float = 1.1
    severity_high_ratio: float = 1.2
    severity_critical_ratio: float = 1.4

    def __post_init__(self):
        if not (self.severity_medium_ratio <= self.severity_high_ratio <= self.severity_critical_ratio):
            raise ValueError("Severity ratios must be non-decreasing")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CapacityPolicy":
        s = settings or default_settings
        return cls(
            default_weekly_capacity_hours=s.DEFAULT_WEEKLY_CAPACITY_HOURS,
            high_utilization_threshold=s.HIGH_UTILIZATION_THRESHOLD,
            over_allocation_threshold=s.OVER_ALLOCATION_THRESHOLD,
            underutilized_threshold=s.UNDERUTILIZED_THRESHOLD,
            max_allocation_hours=s.MAX_ALLOCATION_HOURS,
            severity_medium_ratio=s.SEVERITY_MEDIUM_RATIO,
            severity_high_ratio=s.SEVERITY_HIGH_RATIO,
            severity_critical_ratio=s.SEVERITY_CRITICAL_RATIO,
        )

    def capacity_for(self, employee) -> float:
        """Weekly capacity of an employee, falling back to the default."""
        hours = getattr(employee, "weekly_capacity_hours", None)
        return float(hours) if hours else self.default_weekly_capacity_hours

    def classify_severity(self, utilization_ratio: float) -> Severity:
        """Map allocated/capacity (a fraction, e.g. 1.25) onto a severity band."""
        if utilization_ratio < self.severity_medium_ratio:
            return Severity.LOW
        if utilization_ratio < self.severity_high_ratio:
            return Severity.MEDIUM
        if utilization_ratio < self.severity_critical_ratio:
            return Severity.HIGH
        return Severity.CRITICAL
