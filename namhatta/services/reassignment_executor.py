from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlmodel import Session

from ..models.leadership_node import LeadershipNode
from ..models.role_change import RoleChangeAction
from .audit_log import AuditEntry, AuditSink, SqlAuditSink
from .hierarchy_errors import EmptyPlan, HierarchyError, PartialValidationFailure, require_reason
from .hierarchy_graph import HierarchyGraph
from .supervisor_eligibility import SupervisorEligibilityResolver

logger = logging.getLogger(__name__)


# -------------------------
# Plans / results
# -------------------------

@dataclass(frozen=True)
class BulkPlan:
    """
    One new supervisor for every listed subordinate; all-or-nothing.
    """
    target_supervisor_id: int
    subordinate_ids: Tuple[int, ...] = ()

    def pairs(self, default_ids: Iterable[int] = ()) -> List[Tuple[int, int]]:
        ids = self.subordinate_ids or tuple(sorted(default_ids))
        return [(sub_id, self.target_supervisor_id) for sub_id in dict.fromkeys(ids)]


@dataclass(frozen=True)
class IndividualPlan:
    """
    A distinct new supervisor per subordinate; each item commits on its own.
    """
    assignments: Dict[int, int] = field(default_factory=dict)

    def pairs(self, default_ids: Iterable[int] = ()) -> List[Tuple[int, int]]:
        return sorted(self.assignments.items())


ReassignmentPlan = Union[BulkPlan, IndividualPlan]


@dataclass(frozen=True)
class ReassignmentFailure:
    subordinate_id: int
    code: str
    message: str


@dataclass
class ReassignmentResult:
    succeeded: List[int] = field(default_factory=list)
    failed: List[ReassignmentFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


# -------------------------
# Executor
# -------------------------

class ReassignmentExecutor:
    """
    Applies subordinate -> new supervisor mappings.

    Every target is re-validated with the eligibility filter at commit time,
    so a stale candidate list from a client is rejected instead of trusted.
    """

    def __init__(
        self,
        session: Session,
        graph: Optional[HierarchyGraph] = None,
        resolver: Optional[SupervisorEligibilityResolver] = None,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.session = session
        self.graph = graph or HierarchyGraph(session)
        self.resolver = resolver or SupervisorEligibilityResolver(self.graph)
        self.audit = audit or SqlAuditSink()

    def validate_edge(
        self,
        subordinate_id: int,
        target_id: int,
        exclude_ids: Iterable[int] = (),
    ) -> LeadershipNode:
        sub = self.graph.get_node(subordinate_id, for_update=True)
        max_rank, min_rank = self.resolver.bounds_for(sub.role)
        self.resolver.check_candidate(
            target_id,
            sub.district_code,
            max_rank,
            {subordinate_id, *exclude_ids},
            min_rank=min_rank,
        )
        return self.graph.check_edge(subordinate_id, target_id)

    def _move(self, subordinate_id: int, target_id: int, reason: str, actor: Optional[str]) -> None:
        sub = self.graph.get_node(subordinate_id)
        previous = sub.supervisor_id
        self.graph.set_supervisor(subordinate_id, target_id)
        self.audit.emit(
            self.session,
            AuditEntry(
                node_id=subordinate_id,
                district_code=sub.district_code,
                action=RoleChangeAction.REASSIGN,
                reason=reason,
                previous_role=sub.role,
                new_role=sub.role,
                previous_supervisor_id=previous,
                new_supervisor_id=target_id,
                actor=actor,
            ),
        )

    def stage(
        self,
        pairs: List[Tuple[int, int]],
        *,
        reason: str,
        actor: Optional[str] = None,
        exclude_ids: Iterable[int] = (),
    ) -> List[int]:
        """
        Validate every pair, then write them all, in the caller's transaction
        (no commit). Raises PartialValidationFailure for the first bad pair
        before anything is written.
        """
        excluded = set(exclude_ids)
        for sub_id, target_id in pairs:
            try:
                self.validate_edge(sub_id, target_id, excluded)
            except HierarchyError as exc:
                raise PartialValidationFailure(sub_id, exc) from exc

        moved: List[int] = []
        for sub_id, target_id in pairs:
            try:
                self._move(sub_id, target_id, reason, actor)
            except HierarchyError as exc:
                raise PartialValidationFailure(sub_id, exc) from exc
            moved.append(sub_id)
        return moved

    def execute(
        self,
        plan: ReassignmentPlan,
        reason: str,
        actor: Optional[str] = None,
    ) -> ReassignmentResult:
        reason = require_reason(reason)
        if not plan.pairs():
            raise EmptyPlan("bulk" if isinstance(plan, BulkPlan) else "individual")
        if isinstance(plan, BulkPlan):
            return self._execute_bulk(plan, reason, actor)
        return self._execute_individual(plan, reason, actor)

    def _execute_bulk(self, plan: BulkPlan, reason: str, actor: Optional[str]) -> ReassignmentResult:
        pairs = plan.pairs()
        moving = [sub_id for sub_id, _ in pairs]
        try:
            moved = self.stage(pairs, reason=reason, actor=actor, exclude_ids=moving)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "bulk reassignment committed: %s subordinate(s) -> %s",
            len(moved),
            plan.target_supervisor_id,
        )
        return ReassignmentResult(succeeded=moved)

    def _execute_individual(self, plan: IndividualPlan, reason: str, actor: Optional[str]) -> ReassignmentResult:
        result = ReassignmentResult()
        for sub_id, target_id in plan.pairs():
            try:
                self.validate_edge(sub_id, target_id)
                self._move(sub_id, target_id, reason, actor)
                self.session.commit()
            except HierarchyError as exc:
                self.session.rollback()
                logger.warning(
                    "reassignment of %s -> %s rejected: %s (%s)",
                    sub_id,
                    target_id,
                    exc.code,
                    exc.message,
                )
                result.failed.append(ReassignmentFailure(sub_id, exc.code, exc.message))
                continue
            except Exception:
                self.session.rollback()
                raise
            result.succeeded.append(sub_id)

        logger.info(
            "individual reassignment done: %s succeeded, %s failed",
            len(result.succeeded),
            len(result.failed),
        )
        return result
