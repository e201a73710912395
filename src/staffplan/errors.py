"""
Error kinds raised by the allocation engine.

Callers branch on the class: NotFoundError, ValidationError, ConflictError,
CapacityExceededError, StateTransitionError and StorageError never overlap,
so a transport layer can map each one to its own status code.
"""

import math
from typing import Any, Dict, List, Optional


class AllocationEngineError(Exception):
    """Base class for every error the engine raises on purpose."""

    code = "engine_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class NotFoundError(AllocationEngineError):
    """Employee, project, department or allocation does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(AllocationEngineError):
    """Malformed input: bad dates, non-positive hours, missing role, out of project bounds."""

    code = "validation_failed"

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, Any]]] = None):
        # NaN and infinity have no JSON form
        self.field_errors = [
            {**e, "value": str(e["value"])}
            if isinstance(e.get("value"), float) and not math.isfinite(e["value"]) else e
            for e in field_errors or []
        ]
        super().__init__(message, {"fields": self.field_errors})

    @classmethod
    def from_fields(cls, field_errors: List[Dict[str, Any]]) -> "ValidationError":
        summary = ", ".join(e["message"] for e in field_errors)
        return cls(f"Validation failed: {summary}", field_errors)


class ConflictError(AllocationEngineError):
    """Overlapping live allocation for the same employee; raised only when not forced."""

    code = "conflict"

    def __init__(self, report):
        count = len(report.conflicts)
        super().__init__(
            f"Allocation conflicts with {count} existing allocation(s). Use force mode to override.",
            {"conflicts": report.to_dict()},
        )
        self.report = report


class CapacityExceededError(AllocationEngineError):
    """Utilization above threshold under strict enforcement."""

    code = "capacity_exceeded"

    def __init__(self, result):
        super().__init__(
            f"Capacity exceeded: {result.utilization_rate:.1f}% of {result.max_capacity_hours:g}h weekly capacity",
            {"capacity": result.to_dict()},
        )
        self.result = result


class StateTransitionError(AllocationEngineError):
    """Illegal lifecycle move, e.g. completing a cancelled allocation."""

    code = "invalid_transition"

    def __init__(self, allocation_id: str, current: str, target: str, reason: Optional[str] = None):
        message = reason or f"Cannot move allocation {allocation_id} from '{current}' to '{target}'"
        super().__init__(message, {"allocation_id": allocation_id, "from": current, "to": target})
        self.current = current
        self.target = target


class StorageError(AllocationEngineError):
    """Opaque passthrough of a repository failure."""

    code = "storage_error"
