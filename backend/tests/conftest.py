"""Shared fixtures: a throwaway SQLite database per test and bearer tokens."""
import uuid

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import approval_engine.models  # noqa: F401
from approval_engine.core.security import create_access_token
from approval_engine.db.base import Base


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite where each connection is independent (for cross-session tests)."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'approvals.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def serialized_engine(tmp_path):
    """File-backed SQLite that takes the write lock at BEGIN, so concurrent
    transactions queue up behind each other instead of failing."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'approvals_race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(eng, "connect")
    def _no_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


# ─── Identities ───────────────────────────────────────────────────────────────

def make_token(user_id: uuid.UUID, role: str = "APPROVER", client_ids=None) -> str:
    return create_access_token(str(user_id), role, client_ids=client_ids)


def auth_header(user_id: uuid.UUID, role: str = "APPROVER", client_ids=None) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role, client_ids)}"}
