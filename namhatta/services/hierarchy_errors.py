from __future__ import annotations

from typing import Any, Dict, Optional


class HierarchyError(Exception):
    """
    Base for every refusal raised by the hierarchy engine.

    - code is the API-stable reason code (the class name).
    - status_code is the HTTP status the API layer answers with.
    - context carries the ids/ranks involved so callers can explain the refusal.
    """

    status_code: int = 422

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


# -------------------------
# Not found
# -------------------------

class NotFound(HierarchyError):
    status_code = 404

    def __init__(self, node_id: Any, what: str = "node") -> None:
        super().__init__(f"{what} {node_id} not found", node_id=node_id)


# -------------------------
# Structural / invariant violations (rejected before any write)
# -------------------------

class InvalidRankOrdering(HierarchyError):
    pass


class CrossDistrict(HierarchyError):
    pass


class RootMustHaveNoSupervisor(HierarchyError):
    pass


class DanglingSupervisor(HierarchyError):
    pass


class CircularReporting(HierarchyError):
    pass


class IneligibleSupervisor(HierarchyError):
    pass


# -------------------------
# State machine violations
# -------------------------

class InvalidTransition(HierarchyError):
    status_code = 409


class ReassignmentRequired(HierarchyError):
    status_code = 409


# -------------------------
# Commit-time staleness
# -------------------------

class PartialValidationFailure(HierarchyError):
    """
    One edge of a reassignment plan failed validation; nothing was committed.
    `cause` is the first violation found.
    """

    status_code = 409

    def __init__(self, subordinate_id: int, cause: HierarchyError) -> None:
        super().__init__(
            f"reassignment of {subordinate_id} rejected: {cause.message}",
            subordinate_id=subordinate_id,
        )
        self.subordinate_id = subordinate_id
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["cause"] = self.cause.to_dict()
        return data


# -------------------------
# Request
# -------------------------

class ReasonRequired(HierarchyError):
    status_code = 400

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "a non-empty reason is required for every change")


class DistrictRequired(HierarchyError):
    status_code = 400

    def __init__(self, node_id: int) -> None:
        super().__init__(f"node {node_id} needs a district code", node_id=node_id)


class EmptyPlan(HierarchyError):
    """A standalone reassignment that names nobody to move."""
    status_code = 400

    def __init__(self, mode: str) -> None:
        super().__init__(f"{mode} reassignment names no subordinates", mode=mode)


def require_reason(reason: Optional[str]) -> str:
    s = ("" if reason is None else str(reason)).strip()
    if not s:
        raise ReasonRequired()
    return s
