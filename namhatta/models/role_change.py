from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoleChangeAction(str, Enum):
    """
    What kind of committed change a record describes.
    Values are API-stable strings and are safe to store and display.
    """

    LINK = "link"
    ASSIGN = "assign"
    PROMOTE = "promote"
    DEMOTE = "demote"
    REMOVE = "remove"
    REASSIGN = "reassign"


class RoleChangeRecord(SQLModel, table=True):
    """
    Audit row for one committed change to a node's role or supervisor.

    Notes:
    - Written in the same transaction as the change it describes.
    - Roles are stored as plain strings so the history survives enum renames.
    - This service only writes these rows; history queries belong to the audit consumer.
    """

    __tablename__ = "role_change_records"

    id: Optional[int] = Field(default=None, primary_key=True)

    node_id: int = Field(foreign_key="leadership_nodes.id", index=True)
    district_code: str = Field(index=True)

    action: RoleChangeAction = Field(index=True)

    previous_role: Optional[str] = Field(default=None)
    new_role: Optional[str] = Field(default=None)

    previous_supervisor_id: Optional[int] = Field(default=None)
    new_supervisor_id: Optional[int] = Field(default=None)

    reason: str
    actor: Optional[str] = Field(default=None, index=True)

    subordinates_transferred: int = Field(default=0)

    created_at: datetime = Field(default_factory=utcnow, index=True)
