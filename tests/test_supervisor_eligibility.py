"""
Tests for SupervisorEligibilityResolver: candidate lists, single-candidate
checks and the strict parent-rank policy.
"""

from __future__ import annotations

import pytest

from conftest import A, B, C, M
from namhatta.models import LOWEST_RANK, LeadershipRole
from namhatta.services.hierarchy_errors import (
    CrossDistrict,
    IneligibleSupervisor,
    InvalidRankOrdering,
    NotFound,
    RootMustHaveNoSupervisor,
)
from namhatta.services.hierarchy_graph import HierarchyGraph
from namhatta.services.supervisor_eligibility import SupervisorEligibilityResolver, required_max_rank


def _resolver(session, strict: bool = False) -> SupervisorEligibilityResolver:
    return SupervisorEligibilityResolver(HierarchyGraph(session), strict_parent_rank=strict)


class TestRequiredMaxRank:
    @pytest.mark.parametrize(
        "role,expected",
        [
            (LeadershipRole.DISTRICT_SUPERVISOR, None),
            (LeadershipRole.MALA, 0),
            (LeadershipRole.MAHA_CHAKRA, 1),
            (LeadershipRole.CHAKRA, 2),
            (LeadershipRole.UPA_CHAKRA, 3),
            (LeadershipRole.NONE, LOWEST_RANK),
        ],
    )
    def test_threshold(self, role, expected):
        assert required_max_rank(role) == expected


class TestBounds:
    def test_default_any_higher_rank(self, session):
        assert _resolver(session).bounds_for(LeadershipRole.CHAKRA) == (2, None)

    def test_strict_only_parent_rank(self, session):
        assert _resolver(session, strict=True).bounds_for(LeadershipRole.CHAKRA) == (2, 2)

    def test_members_unaffected_by_strict(self, session):
        assert _resolver(session, strict=True).bounds_for(LeadershipRole.NONE) == (LOWEST_RANK, 0)

    def test_root_has_no_bounds(self, session):
        assert _resolver(session).bounds_for(LeadershipRole.DISTRICT_SUPERVISOR) == (None, None)


@pytest.mark.usefixtures("d1")
class TestFindCandidates:
    def test_highest_authority_first(self, session):
        found = _resolver(session).find_candidates("D1", 3)
        assert [n.id for n in found] == [A, B, C]

    def test_threshold_filters(self, session):
        found = _resolver(session).find_candidates("D1", 1)
        assert [n.id for n in found] == [A, B]

    def test_excluded_ids(self, session):
        found = _resolver(session).find_candidates("D1", 3, exclude_ids=[B])
        assert [n.id for n in found] == [A, C]

    def test_members_never_offered(self, session):
        found = _resolver(session).find_candidates("D1", LOWEST_RANK)
        assert M not in {n.id for n in found}

    def test_other_district_empty(self, session, add_node):
        add_node(50, LeadershipRole.DISTRICT_SUPERVISOR, district_code="D2")
        assert [n.id for n in _resolver(session).find_candidates("D2", 3)] == [50]
        assert _resolver(session).find_candidates("D9", 3) == []

    def test_strict_mode_can_be_empty(self, session):
        # no MAHA_CHAKRA in D1
        assert _resolver(session, strict=True).find_candidates("D1", 2) == []
        assert [n.id for n in _resolver(session, strict=True).find_candidates("D1", 1)] == [B]


@pytest.mark.usefixtures("d1")
class TestCheckCandidate:
    def test_eligible(self, session):
        assert _resolver(session).check_candidate(A, "D1", 2).id == A

    def test_unknown(self, session):
        with pytest.raises(NotFound) as exc:
            _resolver(session).check_candidate(999, "D1", 2)
        assert "supervisor 999" in exc.value.message

    def test_other_district(self, session):
        with pytest.raises(CrossDistrict):
            _resolver(session).check_candidate(A, "D2", 2)

    def test_excluded(self, session):
        with pytest.raises(IneligibleSupervisor):
            _resolver(session).check_candidate(B, "D1", 2, exclude_ids=[B])

    def test_member(self, session):
        with pytest.raises(IneligibleSupervisor):
            _resolver(session).check_candidate(M, "D1", LOWEST_RANK)

    def test_rank_too_low(self, session):
        with pytest.raises(InvalidRankOrdering):
            _resolver(session).check_candidate(C, "D1", 1)

    def test_root_subordinate(self, session):
        with pytest.raises(RootMustHaveNoSupervisor):
            _resolver(session).check_candidate(A, "D1", None)

    def test_strict_rejects_grandparent_rank(self, session):
        with pytest.raises(InvalidRankOrdering):
            _resolver(session, strict=True).check_candidate(A, "D1", 1)


@pytest.mark.usefixtures("d1")
class TestCountSubordinates:
    def test_counts(self, session, add_node):
        add_node(5, LeadershipRole.NONE, B)
        counts = _resolver(session).count_subordinates([A, B, C, M])
        assert counts == {A: 1, B: 2, C: 1, M: 0}

    def test_empty(self, session):
        assert _resolver(session).count_subordinates([]) == {}
