from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import select

from ..models.leadership_node import LOWEST_RANK, ROOT_RANK, LeadershipNode, LeadershipRole
from .hierarchy_errors import (
    CrossDistrict,
    IneligibleSupervisor,
    InvalidRankOrdering,
    NotFound,
    RootMustHaveNoSupervisor,
)
from .hierarchy_graph import HierarchyGraph


def required_max_rank(role: LeadershipRole) -> Optional[int]:
    """
    Highest rank number a supervisor of `role` may hold.

    - DISTRICT_SUPERVISOR: None (roots have no supervisor)
    - ranked roles: rank(role) - 1
    - NONE (ordinary member): any leader, i.e. LOWEST_RANK
    """
    role = LeadershipRole(role)
    if role.is_root:
        return None
    if not role.has_rank:
        return LOWEST_RANK
    return role.rank - 1


class SupervisorEligibilityResolver:
    """
    Who may legally become someone's supervisor.

    `strict_parent_rank` narrows every threshold to the immediate parent rank
    (min_rank = max_rank) instead of "this rank or any higher".
    """

    def __init__(self, graph: HierarchyGraph, *, strict_parent_rank: bool = False) -> None:
        self.graph = graph
        self.strict_parent_rank = strict_parent_rank

    def bounds_for(self, role: LeadershipRole) -> Tuple[Optional[int], Optional[int]]:
        """
        (max_rank, min_rank) a supervisor of `role` must fall within.
        Ordinary members may report to any leader, strict mode or not.
        """
        role = LeadershipRole(role)
        max_rank = required_max_rank(role)
        if max_rank is None:
            return None, None
        if not role.has_rank:
            return max_rank, ROOT_RANK
        return max_rank, (max_rank if self.strict_parent_rank else None)

    def _min_rank(self, max_rank: int, min_rank: Optional[int]) -> Optional[int]:
        if min_rank is not None:
            return min_rank
        return max_rank if self.strict_parent_rank else None

    def find_candidates(
        self,
        district_code: str,
        max_rank: int,
        exclude_ids: Iterable[int] = (),
        *,
        min_rank: Optional[int] = None,
    ) -> List[LeadershipNode]:
        """
        Same district, holds a role, rank <= max_rank, not excluded.
        An empty list means "no available supervisor", not an error.
        """
        excluded = set(exclude_ids or ())
        lo = self._min_rank(max_rank, min_rank)

        out: List[LeadershipNode] = []
        for node in self.graph.list_district(district_code, with_role_only=True):
            rank = node.rank
            if rank is None or rank > max_rank:
                continue
            if lo is not None and rank < lo:
                continue
            if node.id in excluded:
                continue
            out.append(node)

        out.sort(key=lambda n: (n.rank, n.id))
        return out

    def check_candidate(
        self,
        candidate_id: int,
        district_code: str,
        max_rank: Optional[int],
        exclude_ids: Iterable[int] = (),
        *,
        min_rank: Optional[int] = None,
    ) -> LeadershipNode:
        """
        The find_candidates filter applied to one id, raising the specific
        reason it fails. `max_rank=None` means no supervisor is allowed at all.
        """
        candidate = self.graph.find_node(candidate_id)
        if candidate is None:
            raise NotFound(candidate_id, what="supervisor")

        if candidate.district_code != district_code:
            raise CrossDistrict(
                f"supervisor {candidate_id} is in district {candidate.district_code}, not {district_code}",
                supervisor_id=candidate_id,
                district_code=district_code,
            )

        if candidate_id in set(exclude_ids or ()):
            raise IneligibleSupervisor(
                f"{candidate_id} cannot supervise here (it is part of the change being made)",
                supervisor_id=candidate_id,
            )

        if not candidate.has_role():
            raise IneligibleSupervisor(
                f"{candidate_id} holds no leadership role",
                supervisor_id=candidate_id,
            )

        if max_rank is None:
            raise RootMustHaveNoSupervisor(
                "a district supervisor cannot have a supervisor",
                supervisor_id=candidate_id,
            )

        rank = candidate.rank
        lo = self._min_rank(max_rank, min_rank)
        if rank > max_rank or (lo is not None and rank < lo):
            wanted = f"rank {lo}" if lo == max_rank else f"rank <= {max_rank}"
            raise InvalidRankOrdering(
                f"{LeadershipRole(candidate.role).value} {candidate_id} (rank {rank}) is not eligible; need {wanted}",
                supervisor_id=candidate_id,
                supervisor_rank=rank,
                max_rank=max_rank,
            )

        return candidate

    def count_subordinates(self, node_ids: Iterable[int]) -> Dict[int, int]:
        """
        Direct-report count per node, for candidate listings.
        """
        ids = list(node_ids)
        counts: Dict[int, int] = {i: 0 for i in ids}
        if not ids:
            return counts

        q = (
            select(LeadershipNode.supervisor_id, func.count())
            .where(LeadershipNode.supervisor_id.in_(ids))
            .group_by(LeadershipNode.supervisor_id)
        )
        for supervisor_id, n in self.graph.session.exec(q).all():
            counts[int(supervisor_id)] = int(n or 0)
        return counts
