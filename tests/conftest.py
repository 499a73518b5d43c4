"""
Shared fixtures: a fresh in-memory database per test and a small district
builder so each test states its hierarchy in one place.
"""

from __future__ import annotations

import os

# Must be set before namhatta.config is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from typing import Callable, Iterator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from namhatta.database import get_db, init_db, make_engine
from namhatta.main import app
from namhatta.models import LeadershipNode, LeadershipRole, RoleChangeRecord

# Scenario D1
A, B, C, M = 1, 2, 3, 4

AddNode = Callable[..., LeadershipNode]


@pytest.fixture()
def db_engine() -> Iterator[Engine]:
    eng = make_engine("sqlite://")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(db_engine: Engine) -> Iterator[Session]:
    with Session(db_engine) as s:
        yield s


@pytest.fixture()
def add_node(session: Session) -> AddNode:
    """
    Insert a node directly (parents first), bypassing the transition engine.
    """

    def _add(
        node_id: int,
        role: LeadershipRole = LeadershipRole.NONE,
        supervisor_id: Optional[int] = None,
        district_code: str = "D1",
    ) -> LeadershipNode:
        node = LeadershipNode(
            id=node_id,
            district_code=district_code,
            role=role,
            supervisor_id=supervisor_id,
        )
        session.add(node)
        session.commit()
        session.refresh(node)
        return node

    return _add


@pytest.fixture()
def d1(add_node: AddNode) -> None:
    """
    A (DISTRICT_SUPERVISOR) <- B (MALA) <- C (CHAKRA) <- M (member)
    """
    add_node(A, LeadershipRole.DISTRICT_SUPERVISOR)
    add_node(B, LeadershipRole.MALA, A)
    add_node(C, LeadershipRole.CHAKRA, B)
    add_node(M, LeadershipRole.NONE, C)


@pytest.fixture()
def audit_rows(session: Session) -> Callable[[], list]:
    def _rows() -> list:
        return list(session.exec(select(RoleChangeRecord).order_by(RoleChangeRecord.id)).all())

    return _rows


@pytest.fixture()
def client(db_engine: Engine) -> Iterator[TestClient]:
    def _get_db() -> Iterator[Session]:
        with Session(db_engine) as s:
            yield s

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def fresh(session: Session, node_id: int) -> LeadershipNode:
    """Re-read a node from the database, ignoring the identity map."""
    session.expire_all()
    node = session.get(LeadershipNode, node_id)
    assert node is not None
    return node
