"""
Tests for HierarchyGraph: single-edge rank rules, supervisor/role writes,
combined repositioning and whole-district checks.
"""

from __future__ import annotations

import pytest

from conftest import A, B, C, M, fresh
from namhatta.models import LeadershipRole
from namhatta.services.hierarchy_errors import (
    CircularReporting,
    CrossDistrict,
    DanglingSupervisor,
    DistrictRequired,
    IneligibleSupervisor,
    InvalidRankOrdering,
    NotFound,
    RootMustHaveNoSupervisor,
)
from namhatta.services.hierarchy_graph import HierarchyGraph, edge_violation


class TestEdgeViolation:
    """Rank rules for one reporting edge."""

    def test_higher_rank_may_supervise(self):
        assert edge_violation(2, LeadershipRole.CHAKRA, 1, LeadershipRole.MALA) is None

    def test_member_may_report_to_lowest_leader(self):
        assert edge_violation(2, LeadershipRole.NONE, 1, LeadershipRole.UPA_CHAKRA) is None

    def test_equal_rank_rejected(self):
        err = edge_violation(2, LeadershipRole.CHAKRA, 1, LeadershipRole.CHAKRA)
        assert isinstance(err, InvalidRankOrdering)

    def test_lower_rank_rejected(self):
        err = edge_violation(2, LeadershipRole.MALA, 1, LeadershipRole.UPA_CHAKRA)
        assert isinstance(err, InvalidRankOrdering)
        assert err.context["node_rank"] == 1
        assert err.context["supervisor_rank"] == 4

    def test_root_never_reports(self):
        err = edge_violation(2, LeadershipRole.DISTRICT_SUPERVISOR, 1, LeadershipRole.DISTRICT_SUPERVISOR)
        assert isinstance(err, RootMustHaveNoSupervisor)

    def test_member_cannot_supervise_member(self):
        err = edge_violation(2, LeadershipRole.NONE, 1, LeadershipRole.NONE)
        assert isinstance(err, IneligibleSupervisor)

    def test_member_cannot_supervise_leader(self):
        err = edge_violation(2, LeadershipRole.UPA_CHAKRA, 1, LeadershipRole.NONE)
        assert isinstance(err, InvalidRankOrdering)


@pytest.mark.usefixtures("d1")
class TestReads:
    def test_get_node_missing(self, session):
        with pytest.raises(NotFound) as exc:
            HierarchyGraph(session).get_node(999)
        assert exc.value.status_code == 404

    def test_direct_subordinates(self, session):
        subs = HierarchyGraph(session).get_direct_subordinates(B)
        assert [n.id for n in subs] == [C]

    def test_direct_subordinates_of_missing_node(self, session):
        with pytest.raises(NotFound):
            HierarchyGraph(session).get_direct_subordinates(999)

    def test_list_district_with_role_only(self, session, add_node):
        add_node(50, LeadershipRole.DISTRICT_SUPERVISOR, district_code="D2")
        graph = HierarchyGraph(session)
        assert [n.id for n in graph.list_district("D1")] == [A, B, C, M]
        assert [n.id for n in graph.list_district("D1", with_role_only=True)] == [A, B, C]


@pytest.mark.usefixtures("d1")
class TestEnsureNode:
    def test_creates_member(self, session):
        node = HierarchyGraph(session).ensure_node(10, "D1")
        assert node.role == LeadershipRole.NONE
        assert node.supervisor_id is None
        assert node.version == 1

    def test_existing_node_returned(self, session):
        node = HierarchyGraph(session).ensure_node(B, "D1")
        assert node.role == LeadershipRole.MALA

    def test_district_mismatch(self, session):
        with pytest.raises(CrossDistrict):
            HierarchyGraph(session).ensure_node(B, "D2")

    def test_blank_district(self, session):
        with pytest.raises(DistrictRequired):
            HierarchyGraph(session).ensure_node(10, "  ")


@pytest.mark.usefixtures("d1")
class TestSetSupervisor:
    def test_move_bumps_version(self, session):
        before = fresh(session, C).version
        HierarchyGraph(session).set_supervisor(C, A)
        session.commit()

        node = fresh(session, C)
        assert node.supervisor_id == A
        assert node.version == before + 1

    def test_same_supervisor_is_noop(self, session):
        before = fresh(session, C).version
        HierarchyGraph(session).set_supervisor(C, B)
        assert fresh(session, C).version == before

    def test_self_reporting(self, session):
        with pytest.raises(CircularReporting):
            HierarchyGraph(session).set_supervisor(C, C)

    def test_unknown_supervisor(self, session):
        with pytest.raises(NotFound):
            HierarchyGraph(session).set_supervisor(C, 999)

    def test_cross_district(self, session, add_node):
        add_node(50, LeadershipRole.DISTRICT_SUPERVISOR, district_code="D2")
        with pytest.raises(CrossDistrict):
            HierarchyGraph(session).set_supervisor(C, 50)

    def test_rank_must_decrease_upward(self, session):
        with pytest.raises(InvalidRankOrdering):
            HierarchyGraph(session).set_supervisor(B, C)

    def test_root_cannot_get_supervisor(self, session, add_node):
        add_node(5, LeadershipRole.DISTRICT_SUPERVISOR)
        with pytest.raises(RootMustHaveNoSupervisor):
            HierarchyGraph(session).set_supervisor(5, A)

    def test_clear_member_supervisor(self, session):
        HierarchyGraph(session).set_supervisor(M, None)
        session.commit()
        assert fresh(session, M).supervisor_id is None

    def test_clearing_leader_supervisor_refused(self, session):
        with pytest.raises(DanglingSupervisor):
            HierarchyGraph(session).set_supervisor(C, None)
        session.rollback()
        assert fresh(session, C).supervisor_id == B

    def test_clear_root_supervisor_is_noop(self, session):
        before = fresh(session, A).version
        HierarchyGraph(session).set_supervisor(A, None)
        assert fresh(session, A).version == before

    def test_walk_up_finds_ancestor(self, session):
        graph = HierarchyGraph(session)
        with pytest.raises(CircularReporting):
            graph._ensure_not_ancestor(B, graph.get_node(M))


@pytest.mark.usefixtures("d1")
class TestSetRole:
    def test_compatible_role_change(self, session):
        HierarchyGraph(session).set_role(C, LeadershipRole.MAHA_CHAKRA)
        session.commit()
        assert fresh(session, C).role == LeadershipRole.MAHA_CHAKRA

    def test_role_not_below_supervisor(self, session):
        with pytest.raises(InvalidRankOrdering):
            HierarchyGraph(session).set_role(C, LeadershipRole.MALA)

    def test_role_not_below_own_subordinates(self, session):
        with pytest.raises(InvalidRankOrdering):
            HierarchyGraph(session).set_role(B, LeadershipRole.UPA_CHAKRA)

    def test_root_role_needs_no_supervisor(self, session):
        with pytest.raises(RootMustHaveNoSupervisor):
            HierarchyGraph(session).set_role(B, LeadershipRole.DISTRICT_SUPERVISOR)

    def test_ranked_role_needs_supervisor(self, session, add_node):
        add_node(10)
        with pytest.raises(DanglingSupervisor):
            HierarchyGraph(session).set_role(10, LeadershipRole.CHAKRA)


@pytest.mark.usefixtures("d1")
class TestReposition:
    def test_role_and_supervisor_together(self, session):
        HierarchyGraph(session).reposition(C, LeadershipRole.MAHA_CHAKRA, A)
        session.commit()

        node = fresh(session, C)
        assert node.role == LeadershipRole.MAHA_CHAKRA
        assert node.supervisor_id == A

    def test_children_still_checked(self, session):
        with pytest.raises(InvalidRankOrdering):
            HierarchyGraph(session).reposition(B, LeadershipRole.CHAKRA, A)

    def test_dangling(self, session):
        with pytest.raises(DanglingSupervisor):
            HierarchyGraph(session).reposition(B, LeadershipRole.MALA, None)

    def test_root_with_supervisor(self, session):
        with pytest.raises(RootMustHaveNoSupervisor):
            HierarchyGraph(session).reposition(B, LeadershipRole.DISTRICT_SUPERVISOR, A)

    def test_self(self, session):
        with pytest.raises(CircularReporting):
            HierarchyGraph(session).reposition(C, LeadershipRole.CHAKRA, C)


@pytest.mark.usefixtures("d1")
class TestCheckDistrict:
    def test_valid_district(self, session):
        HierarchyGraph(session).check_district("D1")

    def test_detects_corrupt_edge(self, session):
        node = fresh(session, C)
        node.role = LeadershipRole.MALA
        session.add(node)
        session.commit()

        with pytest.raises(InvalidRankOrdering):
            HierarchyGraph(session).check_district("D1")
