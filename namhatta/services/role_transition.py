from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple, TypeVar

from sqlmodel import Session

from ..models.leadership_node import LOWEST_RANK, LeadershipNode, LeadershipRole
from ..models.role_change import RoleChangeAction
from .audit_log import AuditEntry, AuditSink, SqlAuditSink
from .hierarchy_errors import (
    CircularReporting,
    HierarchyError,
    InvalidTransition,
    PartialValidationFailure,
    ReassignmentRequired,
    RootMustHaveNoSupervisor,
    require_reason,
)
from .hierarchy_graph import HierarchyGraph
from .reassignment_executor import ReassignmentExecutor, ReassignmentPlan
from .subordinate_discovery import CascadePreview, SubordinateDiscovery
from .supervisor_eligibility import SupervisorEligibilityResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TransitionResult:
    """
    What a committed transition did, so API handlers can report it exactly.
    """
    node_id: int
    district_code: str
    action: RoleChangeAction
    previous_role: LeadershipRole
    new_role: LeadershipRole
    previous_supervisor_id: Optional[int]
    new_supervisor_id: Optional[int]
    reassigned: Tuple[int, ...] = ()
    cascade_size: int = 0
    audit_id: Optional[int] = None


@dataclass
class _Snapshot:
    role: LeadershipRole
    supervisor_id: Optional[int]
    district_code: str
    subtree: FrozenSet[int] = field(default_factory=frozenset)


class RoleTransitionEngine:
    """
    State machine for a node's role: NO_ROLE <-> HAS_ROLE(rank).

    Transitions:
    - assign:  NO_ROLE -> HAS_ROLE(r)
    - promote: HAS_ROLE(rank) -> HAS_ROLE(r'), r' < rank, rank > 0
    - demote:  HAS_ROLE(rank) -> HAS_ROLE(r'), r' > rank, new supervisor mandatory
    - remove:  HAS_ROLE(any)  -> NO_ROLE

    Demote and remove re-parent every direct subordinate through the
    ReassignmentExecutor; a non-empty direct set without a plan is refused.
    Each call is one transaction: it commits on success and rolls back on
    any error, which is re-raised unchanged.
    """

    def __init__(
        self,
        session: Session,
        *,
        audit: Optional[AuditSink] = None,
        strict_parent_rank: bool = False,
    ) -> None:
        self.session = session
        self.graph = HierarchyGraph(session)
        self.discovery = SubordinateDiscovery(self.graph)
        self.resolver = SupervisorEligibilityResolver(self.graph, strict_parent_rank=strict_parent_rank)
        self.audit = audit or SqlAuditSink()
        self.executor = ReassignmentExecutor(session, self.graph, self.resolver, self.audit)

    # -------------------------
    # Read-only helpers
    # -------------------------

    def preview(self, node_id: int) -> CascadePreview:
        return self.discovery.cascade_preview(node_id)

    # -------------------------
    # Transitions
    # -------------------------

    def link_member(
        self,
        node_id: int,
        district_code: str,
        supervisor_id: Optional[int],
        reason: str,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """
        Enrollment: put an ordinary member under a leader (or detach with None).
        Creates the node on first link.
        """
        reason = require_reason(reason)

        def _do() -> TransitionResult:
            node = self.graph.ensure_node(node_id, district_code)
            if node.has_role():
                raise InvalidTransition(
                    f"{node_id} holds {LeadershipRole(node.role).value}; leaders move through promote/demote/reassign",
                    node_id=node_id,
                )
            before = self._snapshot(node)
            if supervisor_id is not None:
                self.executor.validate_edge(node_id, supervisor_id)
            self.graph.set_supervisor(node_id, supervisor_id)
            return self._record(node, before, RoleChangeAction.LINK, reason, actor)

        return self._commit("link", node_id, _do)

    def assign_role(
        self,
        node_id: int,
        district_code: str,
        new_role: LeadershipRole,
        supervisor_id: Optional[int],
        reason: str,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """
        NO_ROLE -> HAS_ROLE. Roots take no supervisor; every other rank needs
        an eligible one, either supplied or the member's current supervisor.
        """
        reason = require_reason(reason)
        target = LeadershipRole(new_role)

        def _do() -> TransitionResult:
            node = self.graph.ensure_node(node_id, district_code)
            if node.has_role():
                raise InvalidTransition(
                    f"{node_id} already holds {LeadershipRole(node.role).value}; use promote or demote",
                    node_id=node_id,
                )
            if not target.has_rank:
                raise InvalidTransition("assign needs a leadership role", node_id=node_id)

            before = self._snapshot(node, with_subtree=True)
            new_sup = self._resolve_supervisor(node, before, target, supervisor_id, keep_current=True)
            self.graph.reposition(node_id, target, new_sup)
            return self._record(node, before, RoleChangeAction.ASSIGN, reason, actor)

        return self._commit("assign", node_id, _do)

    def promote(
        self,
        node_id: int,
        new_role: LeadershipRole,
        new_supervisor_id: Optional[int] = None,
        reason: str = "",
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """
        Raise a leader's rank. Direct subordinates keep their edges: a higher
        rank only widens the gap to them.

        Without a supplied supervisor the current one is kept, which must
        still strictly outrank the new role (else InvalidRankOrdering).
        """
        reason = require_reason(reason)
        target = LeadershipRole(new_role)

        def _do() -> TransitionResult:
            node = self.graph.get_node(node_id, for_update=True)
            current = LeadershipRole(node.role)

            if not current.has_rank:
                raise InvalidTransition(f"{node_id} holds no role to promote; use assign", node_id=node_id)
            if current.is_root:
                raise InvalidTransition(f"district supervisor {node_id} cannot be promoted", node_id=node_id)
            if not target.has_rank or target.rank >= current.rank:
                raise InvalidTransition(
                    f"cannot promote {current.value} to {target.value}",
                    node_id=node_id,
                    current_rank=current.rank,
                    target_rank=target.rank,
                )

            before = self._snapshot(node, with_subtree=True)
            new_sup = self._resolve_supervisor(node, before, target, new_supervisor_id, keep_current=True)
            self.graph.reposition(node_id, target, new_sup)
            return self._record(node, before, RoleChangeAction.PROMOTE, reason, actor)

        return self._commit("promote", node_id, _do)

    def demote(
        self,
        node_id: int,
        new_role: LeadershipRole,
        new_supervisor_id: Optional[int],
        plan: Optional[ReassignmentPlan] = None,
        reason: str = "",
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """
        Lower a leader's rank under a supplied supervisor and re-parent every
        direct subordinate according to `plan`.
        """
        reason = require_reason(reason)
        target = LeadershipRole(new_role)

        def _do() -> TransitionResult:
            node = self.graph.get_node(node_id, for_update=True)
            current = LeadershipRole(node.role)

            if not current.has_rank:
                raise InvalidTransition(f"{node_id} holds no role to demote", node_id=node_id)
            if current.rank >= LOWEST_RANK:
                raise InvalidTransition(
                    f"{current.value} is the lowest rank; remove the role instead",
                    node_id=node_id,
                )
            if not target.has_rank or target.rank <= current.rank:
                raise InvalidTransition(
                    f"cannot demote {current.value} to {target.value}",
                    node_id=node_id,
                    current_rank=current.rank,
                    target_rank=target.rank,
                )
            if new_supervisor_id is None:
                raise InvalidTransition(
                    f"demoting {node_id} to {target.value} requires a new supervisor",
                    node_id=node_id,
                )

            before = self._snapshot(node, with_subtree=True)
            new_sup = self._resolve_supervisor(node, before, target, new_supervisor_id, keep_current=False)
            moved = self._reassign_direct(node_id, plan, reason, actor)
            self.graph.reposition(node_id, target, new_sup)
            return self._record(node, before, RoleChangeAction.DEMOTE, reason, actor, moved)

        return self._commit("demote", node_id, _do)

    def remove_role(
        self,
        node_id: int,
        plan: Optional[ReassignmentPlan] = None,
        reason: str = "",
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """
        Take the node out of the leadership chain. It stays as an ordinary
        member with no supervisor; its direct subordinates are re-parented.
        """
        reason = require_reason(reason)

        def _do() -> TransitionResult:
            node = self.graph.get_node(node_id, for_update=True)
            if not node.has_role():
                raise InvalidTransition(f"{node_id} holds no role to remove", node_id=node_id)

            before = self._snapshot(node, with_subtree=True)
            moved = self._reassign_direct(node_id, plan, reason, actor)
            self.graph.reposition(node_id, LeadershipRole.NONE, None)
            return self._record(node, before, RoleChangeAction.REMOVE, reason, actor, moved)

        return self._commit("remove", node_id, _do)

    # -------------------------
    # Internals
    # -------------------------

    def _snapshot(self, node: LeadershipNode, *, with_subtree: bool = False) -> _Snapshot:
        subtree = frozenset(self.discovery.all_subordinates(node.id)) if with_subtree else frozenset()
        return _Snapshot(
            role=LeadershipRole(node.role),
            supervisor_id=node.supervisor_id,
            district_code=node.district_code,
            subtree=subtree,
        )

    def _resolve_supervisor(
        self,
        node: LeadershipNode,
        before: _Snapshot,
        target: LeadershipRole,
        supplied_id: Optional[int],
        *,
        keep_current: bool,
    ) -> Optional[int]:
        """
        The supervisor the node will have after the transition.

        A supplied id is checked against the eligibility filter, excluding the
        node and its whole pre-transition subtree (no reporting to one's own
        descendant). A kept supervisor is left to the graph's rank check.
        """
        if target.is_root:
            if supplied_id is not None:
                raise RootMustHaveNoSupervisor(
                    f"district supervisor {node.id} cannot report to {supplied_id}",
                    node_id=node.id,
                    supervisor_id=supplied_id,
                )
            return None

        if supplied_id is None:
            return before.supervisor_id if keep_current else None

        if supplied_id == node.id or supplied_id in before.subtree:
            raise CircularReporting(
                f"{node.id} cannot report to {supplied_id}: it is {node.id} itself or one of its subordinates",
                node_id=node.id,
                supervisor_id=supplied_id,
            )

        max_rank, min_rank = self.resolver.bounds_for(target)
        self.resolver.check_candidate(
            supplied_id,
            before.district_code,
            max_rank,
            {node.id, *before.subtree},
            min_rank=min_rank,
        )
        return supplied_id

    def _plan_pairs(
        self,
        node_id: int,
        direct_ids: Iterable[int],
        plan: Optional[ReassignmentPlan],
    ) -> List[Tuple[int, int]]:
        direct = set(direct_ids)
        if not direct:
            pairs = plan.pairs() if plan is not None else []
        elif plan is None:
            raise ReassignmentRequired(
                f"{len(direct)} direct subordinate(s) of {node_id} need a new supervisor",
                node_id=node_id,
                subordinate_ids=sorted(direct),
            )
        else:
            pairs = plan.pairs(direct)

        planned = {sub_id for sub_id, _ in pairs}
        for extra in sorted(planned - direct):
            raise PartialValidationFailure(
                extra,
                InvalidTransition(f"{extra} does not report to {node_id}", node_id=extra),
            )

        missing = sorted(direct - planned)
        if missing:
            raise ReassignmentRequired(
                f"no new supervisor given for {len(missing)} subordinate(s) of {node_id}",
                node_id=node_id,
                subordinate_ids=missing,
            )
        return pairs

    def _reassign_direct(
        self,
        node_id: int,
        plan: Optional[ReassignmentPlan],
        reason: str,
        actor: Optional[str],
    ) -> Tuple[int, ...]:
        """
        Re-parent the node's direct subordinates inside this transaction.
        Both plan modes are all-or-nothing here: every pair is validated
        before the first write, so no subordinate can be left orphaned.
        """
        direct = self.discovery.direct_subordinates(node_id)
        pairs = self._plan_pairs(node_id, direct, plan)
        if not pairs:
            return ()
        moving = {sub_id for sub_id, _ in pairs}
        moved = self.executor.stage(
            pairs,
            reason=reason,
            actor=actor,
            exclude_ids={node_id, *moving},
        )
        return tuple(moved)

    def _record(
        self,
        node: LeadershipNode,
        before: _Snapshot,
        action: RoleChangeAction,
        reason: str,
        actor: Optional[str],
        moved: Tuple[int, ...] = (),
    ) -> TransitionResult:
        self.graph.check_node(node.id)
        new_role = LeadershipRole(node.role)
        audit_id = self.audit.emit(
            self.session,
            AuditEntry(
                node_id=node.id,
                district_code=before.district_code,
                action=action,
                reason=reason,
                previous_role=before.role,
                new_role=new_role,
                previous_supervisor_id=before.supervisor_id,
                new_supervisor_id=node.supervisor_id,
                actor=actor,
                subordinates_transferred=len(moved),
            ),
        )
        return TransitionResult(
            node_id=node.id,
            district_code=before.district_code,
            action=action,
            previous_role=before.role,
            new_role=new_role,
            previous_supervisor_id=before.supervisor_id,
            new_supervisor_id=node.supervisor_id,
            reassigned=moved,
            cascade_size=len(before.subtree),
            audit_id=audit_id,
        )

    def _commit(self, action: str, node_id: int, fn: Callable[[], T]) -> T:
        try:
            result = fn()
            self.session.commit()
        except HierarchyError as exc:
            self.session.rollback()
            logger.info("%s of %s refused: %s (%s)", action, node_id, exc.code, exc.message)
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info("%s of %s committed", action, node_id)
        return result
