from __future__ import annotations

import logging
from typing import List, Optional, Set

from sqlmodel import Session, select

from ..models.leadership_node import LeadershipNode, LeadershipRole
from .hierarchy_errors import (
    CircularReporting,
    CrossDistrict,
    DanglingSupervisor,
    DistrictRequired,
    HierarchyError,
    IneligibleSupervisor,
    InvalidRankOrdering,
    NotFound,
    RootMustHaveNoSupervisor,
)

logger = logging.getLogger(__name__)


def edge_violation(
    sub_id: int,
    sub_role: LeadershipRole,
    sup_id: int,
    sup_role: LeadershipRole,
) -> Optional[HierarchyError]:
    """
    Rank rules for a single reporting edge sub -> sup (district already checked).

    - A root never reports to anyone.
    - A supervisor must hold a leadership role.
    - A ranked subordinate needs a supervisor with a strictly smaller rank.
    - An ordinary member (NONE) has no rank constraint.
    """
    sub_role = LeadershipRole(sub_role)
    sup_role = LeadershipRole(sup_role)

    if sub_role.is_root:
        return RootMustHaveNoSupervisor(
            f"{sub_id} is a district supervisor and cannot report to {sup_id}",
            node_id=sub_id,
            supervisor_id=sup_id,
        )

    if not sup_role.has_rank:
        if sub_role.has_rank:
            return InvalidRankOrdering(
                f"{sup_id} holds no leadership role and cannot supervise {sub_role.value} {sub_id}",
                node_id=sub_id,
                supervisor_id=sup_id,
            )
        return IneligibleSupervisor(
            f"{sup_id} holds no leadership role and cannot supervise {sub_id}",
            node_id=sub_id,
            supervisor_id=sup_id,
        )

    if sub_role.has_rank and sup_role.rank >= sub_role.rank:
        return InvalidRankOrdering(
            f"{sup_role.value} (rank {sup_role.rank}) cannot supervise "
            f"{sub_role.value} (rank {sub_role.rank})",
            node_id=sub_id,
            supervisor_id=sup_id,
            node_rank=sub_role.rank,
            supervisor_rank=sup_role.rank,
        )

    return None


class HierarchyGraph:
    """
    The only reader/writer of `role` and `supervisor_id`.

    Works inside the caller's session and transaction: it flushes so later
    queries see its writes, but never commits or rolls back.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # -------------------------
    # Reads
    # -------------------------

    def find_node(self, node_id: int, *, for_update: bool = False) -> Optional[LeadershipNode]:
        q = select(LeadershipNode).where(LeadershipNode.id == node_id)
        if for_update:
            # Row lock on Postgres; re-read so we validate against committed state.
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.exec(q).first()

    def get_node(self, node_id: int, *, for_update: bool = False) -> LeadershipNode:
        node = self.find_node(node_id, for_update=for_update)
        if node is None:
            raise NotFound(node_id)
        return node

    def get_direct_subordinates(self, node_id: int) -> List[LeadershipNode]:
        self.get_node(node_id)
        q = (
            select(LeadershipNode)
            .where(LeadershipNode.supervisor_id == node_id)
            .order_by(LeadershipNode.id)
        )
        return list(self.session.exec(q).all())

    def list_district(self, district_code: str, *, with_role_only: bool = False) -> List[LeadershipNode]:
        q = select(LeadershipNode).where(LeadershipNode.district_code == district_code)
        if with_role_only:
            q = q.where(LeadershipNode.role != LeadershipRole.NONE)
        q = q.order_by(LeadershipNode.id)
        return list(self.session.exec(q).all())

    # -------------------------
    # Writes
    # -------------------------

    def ensure_node(self, node_id: int, district_code: str) -> LeadershipNode:
        """
        Create the node the first time a person is linked into the hierarchy.
        """
        district_code = (district_code or "").strip()
        if not district_code:
            raise DistrictRequired(node_id)

        node = self.find_node(node_id, for_update=True)
        if node is not None:
            if node.district_code != district_code:
                raise CrossDistrict(
                    f"node {node_id} belongs to district {node.district_code}, not {district_code}",
                    node_id=node_id,
                    district_code=node.district_code,
                )
            return node

        node = LeadershipNode(id=node_id, district_code=district_code, role=LeadershipRole.NONE)
        self.session.add(node)
        self.session.flush()
        logger.info("leadership node created id=%s district=%s", node_id, district_code)
        return node

    def check_edge(self, subordinate_id: int, new_supervisor_id: int) -> LeadershipNode:
        """
        Everything set_supervisor validates, without writing. Returns the
        (row-locked) subordinate.
        """
        sub = self.get_node(subordinate_id, for_update=True)

        if new_supervisor_id == subordinate_id:
            raise CircularReporting(
                f"{subordinate_id} cannot report to itself",
                node_id=subordinate_id,
            )

        sup = self.get_node(new_supervisor_id, for_update=True)

        if sup.district_code != sub.district_code:
            raise CrossDistrict(
                f"{subordinate_id} ({sub.district_code}) cannot report to "
                f"{new_supervisor_id} ({sup.district_code})",
                node_id=subordinate_id,
                supervisor_id=new_supervisor_id,
            )

        violation = edge_violation(subordinate_id, sub.role, new_supervisor_id, sup.role)
        if violation is not None:
            raise violation

        self._ensure_not_ancestor(subordinate_id, sup)
        return sub

    def set_supervisor(self, subordinate_id: int, new_supervisor_id: Optional[int]) -> LeadershipNode:
        """
        Point `subordinate_id` at a new supervisor (or clear it with None).

        Only members and district supervisors may be left without one.
        """
        if new_supervisor_id is None:
            sub = self.get_node(subordinate_id, for_update=True)
            role = LeadershipRole(sub.role)
            if role.has_rank and not role.is_root:
                raise DanglingSupervisor(
                    f"{role.value} {subordinate_id} cannot be left without a supervisor",
                    node_id=subordinate_id,
                )
            if sub.supervisor_id is not None:
                sub.supervisor_id = None
                sub.touch()
                self.session.add(sub)
                self.session.flush()
            return sub

        sub = self.check_edge(subordinate_id, new_supervisor_id)

        if sub.supervisor_id != new_supervisor_id:
            sub.supervisor_id = new_supervisor_id
            sub.touch()
            self.session.add(sub)
            self.session.flush()
        return sub

    def set_role(self, node_id: int, new_role: LeadershipRole) -> LeadershipNode:
        node = self.get_node(node_id, for_update=True)
        role = LeadershipRole(new_role)

        if role.is_root and node.supervisor_id is not None:
            raise RootMustHaveNoSupervisor(
                f"{node_id} still reports to {node.supervisor_id}; clear it before making it district supervisor",
                node_id=node_id,
                supervisor_id=node.supervisor_id,
            )

        if role.has_rank and not role.is_root and node.supervisor_id is None:
            raise DanglingSupervisor(
                f"{role.value} {node_id} needs a supervisor",
                node_id=node_id,
            )

        if role.has_rank and node.supervisor_id is not None:
            sup = self.get_node(node.supervisor_id)
            violation = edge_violation(node_id, role, sup.id, sup.role)
            if violation is not None:
                raise violation

        for child in self.get_direct_subordinates(node_id):
            violation = edge_violation(child.id, child.role, node_id, role)
            if violation is not None:
                raise violation

        if node.role != role:
            node.role = role
            node.touch()
            self.session.add(node)
            self.session.flush()
        return node

    def reposition(
        self,
        node_id: int,
        new_role: LeadershipRole,
        new_supervisor_id: Optional[int],
    ) -> LeadershipNode:
        """
        Change role and supervisor together, validated against the final pair.

        Demotion needs this: the new supervisor may be legal for the new rank
        but not for the old one, so neither single-field write can go first.
        """
        node = self.get_node(node_id, for_update=True)
        role = LeadershipRole(new_role)

        if new_supervisor_id is None:
            if role.has_rank and not role.is_root:
                raise DanglingSupervisor(f"{role.value} {node_id} needs a supervisor", node_id=node_id)
        else:
            if role.is_root:
                raise RootMustHaveNoSupervisor(
                    f"district supervisor {node_id} cannot report to {new_supervisor_id}",
                    node_id=node_id,
                    supervisor_id=new_supervisor_id,
                )
            if new_supervisor_id == node_id:
                raise CircularReporting(f"{node_id} cannot report to itself", node_id=node_id)

            sup = self.get_node(new_supervisor_id, for_update=True)
            if sup.district_code != node.district_code:
                raise CrossDistrict(
                    f"{node_id} ({node.district_code}) cannot report to "
                    f"{new_supervisor_id} ({sup.district_code})",
                    node_id=node_id,
                    supervisor_id=new_supervisor_id,
                )
            violation = edge_violation(node_id, role, new_supervisor_id, sup.role)
            if violation is not None:
                raise violation
            self._ensure_not_ancestor(node_id, sup)

        for child in self.get_direct_subordinates(node_id):
            violation = edge_violation(child.id, child.role, node_id, role)
            if violation is not None:
                raise violation

        if node.role != role or node.supervisor_id != new_supervisor_id:
            node.role = role
            node.supervisor_id = new_supervisor_id
            node.touch()
            self.session.add(node)
            self.session.flush()
        return node

    # -------------------------
    # Invariant checks
    # -------------------------

    def check_node(self, node_id: int) -> None:
        """
        Re-check one node's own edge: district, rank order, root/dangling rules.
        """
        node = self.get_node(node_id)
        role = LeadershipRole(node.role)

        if node.supervisor_id is None:
            if role.has_rank and not role.is_root:
                raise DanglingSupervisor(f"{role.value} {node_id} needs a supervisor", node_id=node_id)
            return

        sup = self.get_node(node.supervisor_id)
        if sup.district_code != node.district_code:
            raise CrossDistrict(
                f"{node_id} ({node.district_code}) reports across districts to {sup.id} ({sup.district_code})",
                node_id=node_id,
                supervisor_id=sup.id,
            )

        violation = edge_violation(node_id, role, sup.id, sup.role)
        if violation is not None:
            raise violation

    def check_district(self, district_code: str) -> None:
        """
        Re-assert every invariant, acyclicity included, for a whole district.
        """
        nodes = self.list_district(district_code)
        parent_of = {n.id: n.supervisor_id for n in nodes}

        for n in nodes:
            self.check_node(n.id)

        for start in parent_of:
            seen: Set[int] = set()
            cur: Optional[int] = start
            while cur is not None:
                if cur in seen:
                    raise CircularReporting(
                        f"reporting cycle through {cur} in district {district_code}",
                        node_id=cur,
                    )
                seen.add(cur)
                cur = parent_of.get(cur)

    def _ensure_not_ancestor(self, subordinate_id: int, new_supervisor: LeadershipNode) -> None:
        """
        Walk up from the new supervisor; reaching the subordinate would close a cycle.
        """
        visited: Set[int] = set()
        cur: Optional[LeadershipNode] = new_supervisor
        while cur is not None and cur.id not in visited:
            if cur.id == subordinate_id:
                raise CircularReporting(
                    f"{new_supervisor.id} already reports (directly or indirectly) to {subordinate_id}",
                    node_id=subordinate_id,
                    supervisor_id=new_supervisor.id,
                )
            visited.add(cur.id)
            cur = self.find_node(cur.supervisor_id) if cur.supervisor_id is not None else None
