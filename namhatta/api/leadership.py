from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field as PydField, model_validator
from sqlmodel import Session

from ..config import settings
from ..database import get_db
from ..models.leadership_node import LOWEST_RANK, ROOT_RANK, LeadershipNode, LeadershipRole
from ..services.hierarchy_graph import HierarchyGraph
from ..services.reassignment_executor import (
    BulkPlan,
    IndividualPlan,
    ReassignmentExecutor,
    ReassignmentPlan,
)
from ..services.role_transition import RoleTransitionEngine, TransitionResult
from ..services.subordinate_discovery import SubordinateDiscovery
from ..services.supervisor_eligibility import SupervisorEligibilityResolver

router = APIRouter(prefix="/leadership", tags=["leadership"])


# -----------------------------
# Schemas (do NOT use DB model as input)
# -----------------------------

class NodeView(BaseModel):
    id: int
    district_code: str
    role: LeadershipRole
    rank: Optional[int] = None
    supervisor_id: Optional[int] = None
    version: int


class SubordinateView(NodeView):
    # 1 = direct report, 2 = report-of-report, ...
    level: int = 1


class SupervisorCandidate(NodeView):
    subordinate_count: int = 0


class PlanIn(BaseModel):
    """
    How to re-parent subordinates.

    - Bulk: every listed subordinate (or, inside a demote/remove, every direct
      subordinate when the list is empty) moves to target_supervisor_id.
    - Individual: assignments maps subordinate id -> new supervisor id.
    """
    mode: Literal["Bulk", "Individual"]
    target_supervisor_id: Optional[int] = None
    subordinate_ids: List[int] = PydField(default_factory=list)
    assignments: Dict[int, int] = PydField(default_factory=dict)

    @model_validator(mode="after")
    def _check_mode_fields(self) -> "PlanIn":
        if self.mode == "Bulk" and self.target_supervisor_id is None:
            raise ValueError("Bulk plans need target_supervisor_id")
        if self.mode == "Individual" and not self.assignments:
            raise ValueError("Individual plans need at least one assignment")
        return self

    def to_plan(self) -> ReassignmentPlan:
        if self.mode == "Bulk":
            return BulkPlan(
                target_supervisor_id=int(self.target_supervisor_id),
                subordinate_ids=tuple(self.subordinate_ids),
            )
        return IndividualPlan(assignments=dict(self.assignments))


class ChangeRequest(BaseModel):
    """
    Every mutation carries a reason (checked server-side, blank is refused)
    and an optional actor recorded on the audit row.
    """
    reason: Optional[str] = None
    actor: Optional[str] = None


class LinkRequest(ChangeRequest):
    district_code: str
    supervisor_id: Optional[int] = None


class AssignRequest(ChangeRequest):
    district_code: str
    role: LeadershipRole
    supervisor_id: Optional[int] = None


class PromoteRequest(ChangeRequest):
    role: LeadershipRole
    supervisor_id: Optional[int] = None


class DemoteRequest(ChangeRequest):
    role: LeadershipRole
    supervisor_id: Optional[int] = None
    plan: Optional[PlanIn] = None


class RemoveRequest(ChangeRequest):
    plan: Optional[PlanIn] = None


class ReassignRequest(ChangeRequest):
    plan: PlanIn


class TransitionOut(BaseModel):
    node: NodeView
    action: str
    previous_role: LeadershipRole
    new_role: LeadershipRole
    previous_supervisor_id: Optional[int] = None
    new_supervisor_id: Optional[int] = None
    reassigned: List[int] = PydField(default_factory=list)
    cascade_size: int = 0
    audit_id: Optional[int] = None


# -----------------------------
# Helpers
# -----------------------------

def _view(node: LeadershipNode) -> NodeView:
    return NodeView(
        id=node.id,
        district_code=node.district_code,
        role=LeadershipRole(node.role),
        rank=node.rank,
        supervisor_id=node.supervisor_id,
        version=node.version,
    )


def _engine(db: Session) -> RoleTransitionEngine:
    return RoleTransitionEngine(db, strict_parent_rank=settings.strict_parent_rank)


def _resolver(graph: HierarchyGraph) -> SupervisorEligibilityResolver:
    return SupervisorEligibilityResolver(graph, strict_parent_rank=settings.strict_parent_rank)


def _transition_out(db: Session, result: TransitionResult) -> TransitionOut:
    node = HierarchyGraph(db).get_node(result.node_id)
    return TransitionOut(
        node=_view(node),
        action=result.action.value,
        previous_role=result.previous_role,
        new_role=result.new_role,
        previous_supervisor_id=result.previous_supervisor_id,
        new_supervisor_id=result.new_supervisor_id,
        reassigned=list(result.reassigned),
        cascade_size=result.cascade_size,
        audit_id=result.audit_id,
    )


def _plan(p: Optional[PlanIn]) -> Optional[ReassignmentPlan]:
    return p.to_plan() if p is not None else None


# -----------------------------
# Reads
# -----------------------------

@router.get("/nodes/{node_id}", response_model=NodeView)
def get_node(*, db: Session = Depends(get_db), node_id: int) -> NodeView:
    return _view(HierarchyGraph(db).get_node(node_id))


@router.get("/nodes/{node_id}/subordinates")
def list_subordinates(
    *,
    db: Session = Depends(get_db),
    node_id: int,
    transitive: bool = Query(False, description="If true, include every level below, not just direct reports"),
) -> Dict[str, Any]:
    """
    Direct reports by default; with transitive=true the whole subtree,
    each item tagged with its level below the node.
    """
    graph = HierarchyGraph(db)
    discovery = SubordinateDiscovery(graph)

    if not transitive:
        items = [SubordinateView(**_view(n).model_dump(), level=1) for n in graph.get_direct_subordinates(node_id)]
    else:
        preview = discovery.cascade_preview(node_id)
        items = [
            SubordinateView(**_view(graph.get_node(i)).model_dump(), level=preview.depth_by_id[i])
            for i in sorted(preview.all_ids, key=lambda i: (preview.depth_by_id[i], i))
        ]

    return {
        "node_id": node_id,
        "transitive": transitive,
        "count": len(items),
        "items": [i.model_dump() for i in items],
    }


@router.get("/nodes/{node_id}/impact")
def get_impact(*, db: Session = Depends(get_db), node_id: int) -> Dict[str, Any]:
    """
    What demoting or removing this node would touch, so a UI can collect a
    reassignment plan before calling the transition.
    """
    engine = _engine(db)
    graph = engine.graph
    node = graph.get_node(node_id)
    preview = engine.preview(node_id)

    return {
        "node": _view(node).model_dump(),
        "requires_reassignment": preview.requires_reassignment,
        "direct_subordinates": [_view(graph.get_node(i)).model_dump() for i in sorted(preview.direct_ids)],
        "cascade_size": preview.cascade_size,
    }


@router.get("/districts/{district_code}/supervisors")
def find_supervisors(
    *,
    db: Session = Depends(get_db),
    district_code: str,
    max_rank: int = Query(..., ge=ROOT_RANK, le=LOWEST_RANK, description="Highest rank number a candidate may hold"),
    exclude_ids: List[int] = Query([], description="Ids that may not be offered (the node being changed, subordinates being moved)"),
) -> Dict[str, Any]:
    """
    Eligible supervisors in a district, highest authority first.
    An empty list is a normal answer ("no available supervisor").
    """
    graph = HierarchyGraph(db)
    resolver = _resolver(graph)
    candidates = resolver.find_candidates(district_code, max_rank, exclude_ids)
    counts = resolver.count_subordinates(c.id for c in candidates)

    items = [
        SupervisorCandidate(**_view(c).model_dump(), subordinate_count=counts.get(c.id, 0)).model_dump()
        for c in candidates
    ]
    return {
        "district_code": district_code,
        "max_rank": max_rank,
        "strict_parent_rank": resolver.strict_parent_rank,
        "count": len(items),
        "items": items,
    }


@router.get("/districts/{district_code}/hierarchy")
def get_district_hierarchy(*, db: Session = Depends(get_db), district_code: str) -> Dict[str, Any]:
    """
    Every leader in the district grouped by role, highest rank first,
    plus how many ordinary members are linked in.
    """
    nodes = HierarchyGraph(db).list_district(district_code)

    by_role: Dict[str, List[Dict[str, Any]]] = {}
    for rank in range(ROOT_RANK, LOWEST_RANK + 1):
        by_role[LeadershipRole.from_rank(rank).value] = []

    members = 0
    for n in nodes:
        if not n.has_role():
            members += 1
            continue
        by_role[LeadershipRole(n.role).value].append(_view(n).model_dump())

    return {
        "district_code": district_code,
        "roles": by_role,
        "leader_count": len(nodes) - members,
        "member_count": members,
    }


# -----------------------------
# Transitions
# -----------------------------

@router.post("/nodes/{node_id}/link", response_model=TransitionOut)
def link_member(*, db: Session = Depends(get_db), node_id: int, payload: LinkRequest) -> TransitionOut:
    result = _engine(db).link_member(
        node_id,
        payload.district_code,
        payload.supervisor_id,
        reason=payload.reason,
        actor=payload.actor,
    )
    return _transition_out(db, result)


@router.post("/nodes/{node_id}/assign", response_model=TransitionOut)
def assign_role(*, db: Session = Depends(get_db), node_id: int, payload: AssignRequest) -> TransitionOut:
    result = _engine(db).assign_role(
        node_id,
        payload.district_code,
        payload.role,
        payload.supervisor_id,
        reason=payload.reason,
        actor=payload.actor,
    )
    return _transition_out(db, result)


@router.post("/nodes/{node_id}/promote", response_model=TransitionOut)
def promote(*, db: Session = Depends(get_db), node_id: int, payload: PromoteRequest) -> TransitionOut:
    result = _engine(db).promote(
        node_id,
        payload.role,
        payload.supervisor_id,
        reason=payload.reason,
        actor=payload.actor,
    )
    return _transition_out(db, result)


@router.post("/nodes/{node_id}/demote", response_model=TransitionOut)
def demote(*, db: Session = Depends(get_db), node_id: int, payload: DemoteRequest) -> TransitionOut:
    result = _engine(db).demote(
        node_id,
        payload.role,
        payload.supervisor_id,
        plan=_plan(payload.plan),
        reason=payload.reason,
        actor=payload.actor,
    )
    return _transition_out(db, result)


@router.post("/nodes/{node_id}/remove", response_model=TransitionOut)
def remove_role(*, db: Session = Depends(get_db), node_id: int, payload: RemoveRequest) -> TransitionOut:
    result = _engine(db).remove_role(
        node_id,
        plan=_plan(payload.plan),
        reason=payload.reason,
        actor=payload.actor,
    )
    return _transition_out(db, result)


@router.post("/reassignments")
def reassign_subordinates(*, db: Session = Depends(get_db), payload: ReassignRequest) -> Dict[str, Any]:
    """
    Re-parent subordinates without changing anyone's role.

    Bulk is all-or-nothing (a bad edge answers 409 PartialValidationFailure).
    Individual commits item by item and reports failures alongside successes.
    """
    graph = HierarchyGraph(db)
    executor = ReassignmentExecutor(db, graph, _resolver(graph))
    result = executor.execute(payload.plan.to_plan(), reason=payload.reason, actor=payload.actor)

    return {
        "mode": payload.plan.mode,
        "ok": result.ok,
        "succeeded": result.succeeded,
        "failed": [
            {"subordinate_id": f.subordinate_id, "code": f.code, "message": f.message}
            for f in result.failed
        ],
    }
