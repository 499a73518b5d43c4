# namhatta/models/__init__.py
# Central import surface for SQLModel table registration.
# Keeping these imports ensures init_db() sees all models and creates tables.

from .leadership_node import LOWEST_RANK, ROOT_RANK, LeadershipNode, LeadershipRole

# Audit trail written alongside every committed change
from .role_change import RoleChangeAction, RoleChangeRecord

__all__ = [
    "LOWEST_RANK",
    "ROOT_RANK",
    "LeadershipNode",
    "LeadershipRole",
    "RoleChangeAction",
    "RoleChangeRecord",
]
