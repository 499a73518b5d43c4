from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlmodel import Session

from ..models.leadership_node import LeadershipRole
from ..models.role_change import RoleChangeAction, RoleChangeRecord

logger = logging.getLogger(__name__)


def _role_str(role: Optional[LeadershipRole]) -> Optional[str]:
    if role is None:
        return None
    return LeadershipRole(role).value


@dataclass(frozen=True)
class AuditEntry:
    """
    One committed change, as handed to the audit/history consumer.
    """
    node_id: int
    district_code: str
    action: RoleChangeAction
    reason: str
    previous_role: Optional[LeadershipRole] = None
    new_role: Optional[LeadershipRole] = None
    previous_supervisor_id: Optional[int] = None
    new_supervisor_id: Optional[int] = None
    actor: Optional[str] = None
    subordinates_transferred: int = 0


class AuditSink(Protocol):
    def emit(self, session: Session, entry: AuditEntry) -> Optional[int]:
        """Record an entry inside the caller's transaction; return its id if it has one."""
        ...


class SqlAuditSink:
    """
    Default sink: one RoleChangeRecord row per entry, in the same transaction
    as the change, so a rolled-back change leaves no audit row behind.
    """

    def emit(self, session: Session, entry: AuditEntry) -> Optional[int]:
        record = RoleChangeRecord(
            node_id=entry.node_id,
            district_code=entry.district_code,
            action=entry.action,
            previous_role=_role_str(entry.previous_role),
            new_role=_role_str(entry.new_role),
            previous_supervisor_id=entry.previous_supervisor_id,
            new_supervisor_id=entry.new_supervisor_id,
            reason=entry.reason,
            actor=entry.actor,
            subordinates_transferred=entry.subordinates_transferred,
        )
        session.add(record)
        session.flush()

        logger.info(
            "audit %s node=%s district=%s role=%s->%s supervisor=%s->%s moved=%s actor=%s",
            entry.action.value,
            entry.node_id,
            entry.district_code,
            record.previous_role,
            record.new_role,
            entry.previous_supervisor_id,
            entry.new_supervisor_id,
            entry.subordinates_transferred,
            entry.actor or "-",
        )
        return record.id
