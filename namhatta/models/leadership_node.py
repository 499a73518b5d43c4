from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # timezone-aware UTC for future-proofing
    return datetime.now(timezone.utc)


class LeadershipRole(str, Enum):
    """
    Leadership roles inside a district.

    Authority comes from `rank` (lower = more authority), never from the
    declaration order of the members below:
    - DISTRICT_SUPERVISOR: 0 (root of the district forest)
    - MALA: 1
    - MAHA_CHAKRA: 2
    - CHAKRA: 3
    - UPA_CHAKRA: 4
    - NONE: ordinary member, no rank
    """

    NONE = "NONE"
    UPA_CHAKRA = "UPA_CHAKRA"
    CHAKRA = "CHAKRA"
    MAHA_CHAKRA = "MAHA_CHAKRA"
    MALA = "MALA"
    DISTRICT_SUPERVISOR = "DISTRICT_SUPERVISOR"

    @property
    def rank(self) -> Optional[int]:
        return _ROLE_RANKS.get(self)

    @property
    def has_rank(self) -> bool:
        return self is not LeadershipRole.NONE

    @property
    def is_root(self) -> bool:
        return self is LeadershipRole.DISTRICT_SUPERVISOR

    @classmethod
    def from_rank(cls, rank: int) -> "LeadershipRole":
        for role, r in _ROLE_RANKS.items():
            if r == rank:
                return role
        raise ValueError(f"no leadership role has rank {rank}")


_ROLE_RANKS: Dict[LeadershipRole, int] = {
    LeadershipRole.DISTRICT_SUPERVISOR: 0,
    LeadershipRole.MALA: 1,
    LeadershipRole.MAHA_CHAKRA: 2,
    LeadershipRole.CHAKRA: 3,
    LeadershipRole.UPA_CHAKRA: 4,
}

ROOT_RANK = 0
LOWEST_RANK = max(_ROLE_RANKS.values())


class LeadershipNode(SQLModel, table=True):
    """
    A person's place in the leadership reporting forest of one district.

    Notes:
    - id is the person id owned by the person directory; it is never generated here.
    - supervisor_id is the only edge stored; children are queried by supervisor_id.
    - version is bumped on every role/supervisor write so clients can detect changes.
    - Nodes are never deleted: removing a role turns the node into an ordinary member.
    """

    __tablename__ = "leadership_nodes"

    id: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})

    district_code: str = Field(index=True)

    role: LeadershipRole = Field(default=LeadershipRole.NONE, index=True)

    supervisor_id: Optional[int] = Field(
        default=None,
        foreign_key="leadership_nodes.id",
        index=True,
    )

    version: int = Field(default=1)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # -------------------------
    # Convenience helpers
    # -------------------------

    @property
    def rank(self) -> Optional[int]:
        return LeadershipRole(self.role).rank

    def has_role(self) -> bool:
        return LeadershipRole(self.role).has_rank

    def touch(self) -> None:
        self.version = int(self.version or 0) + 1
        self.updated_at = utcnow()
