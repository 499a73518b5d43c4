from __future__ import annotations

import argparse
import logging
from typing import Dict, List, Optional

from sqlmodel import Session, select

from namhatta.database import init_db, session_scope
from namhatta.models.leadership_node import LeadershipNode, LeadershipRole
from namhatta.services.role_transition import RoleTransitionEngine

logger = logging.getLogger(__name__)


# Demo district: one chain from the district supervisor down to a member.
# Ids offset by district so several demo districts can coexist.
DEMO_CHAIN: List[Dict[str, object]] = [
    {"offset": 1, "role": LeadershipRole.DISTRICT_SUPERVISOR, "reports_to": None},
    {"offset": 2, "role": LeadershipRole.MALA, "reports_to": 1},
    {"offset": 3, "role": LeadershipRole.MAHA_CHAKRA, "reports_to": 2},
    {"offset": 4, "role": LeadershipRole.CHAKRA, "reports_to": 3},
    {"offset": 5, "role": LeadershipRole.UPA_CHAKRA, "reports_to": 4},
    {"offset": 6, "role": LeadershipRole.NONE, "reports_to": 5},
    {"offset": 7, "role": LeadershipRole.NONE, "reports_to": 4},
]


def seed_node(
    session: Session,
    district_code: str,
    node_id: int,
    role: LeadershipRole,
    supervisor_id: Optional[int],
) -> bool:
    """
    Create one node through the transition engine (so audit rows exist too).
    Returns False when the node already exists; existing nodes are left alone.
    """
    if session.get(LeadershipNode, node_id) is not None:
        return False

    engine = RoleTransitionEngine(session)
    if role.has_rank:
        engine.assign_role(node_id, district_code, role, supervisor_id, reason="seed:demo", actor="seed")
    else:
        engine.link_member(node_id, district_code, supervisor_id, reason="seed:demo", actor="seed")
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo leadership chain for one district.")
    parser.add_argument("--district", default="D1")
    parser.add_argument("--base-id", type=int, default=1000)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    # Ensure tables exist (local dev)
    init_db()

    created = 0
    with session_scope() as session:
        for row in DEMO_CHAIN:
            node_id = args.base_id + int(row["offset"])
            reports_to = row["reports_to"]
            supervisor_id = args.base_id + int(reports_to) if reports_to is not None else None
            if seed_node(session, args.district, node_id, row["role"], supervisor_id):
                created += 1

        total = session.exec(
            select(LeadershipNode).where(LeadershipNode.district_code == args.district)
        ).all()

    print(f"Seeded district {args.district}: {created} new node(s), {len(total)} total")


if __name__ == "__main__":
    main()
