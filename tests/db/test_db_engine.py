"""Tests for practice_kernel.db.engine: initialization, session scope and savepoints."""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from practice_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from practice_kernel.models import Customer


@pytest.fixture
def global_engine(tmp_path):
    init_engine_from_url(f"sqlite:///{tmp_path / 'scope.db'}")
    create_tables()
    yield get_engine()
    reset_engine()


def _customer(name: str) -> Customer:
    return Customer(tenant_id=uuid4(), name=name, created_by_id=uuid4())


def _count() -> int:
    with get_session() as session:
        return session.execute(select(func.count(Customer.id))).scalar_one()


class TestInitialization:

    def test_uninitialized_access_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()
        with pytest.raises(RuntimeError):
            get_session_factory()

    def test_sqlite_url(self, global_engine):
        assert global_engine.dialect.name == "sqlite"
        assert get_session_factory().kw["expire_on_commit"] is False


class TestSessionScope:

    def test_commits_on_success(self, global_engine):
        with session_scope() as session:
            session.add(_customer("Acme Traders"))
        assert _count() == 1

    def test_rolls_back_on_error(self, global_engine, captured_logs):
        with pytest.raises(ZeroDivisionError):
            with session_scope() as session:
                session.add(_customer("Acme Traders"))
                session.flush()
                1 / 0
        assert _count() == 0
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


class TestSqliteSavepoints:

    def test_released_savepoint_does_not_commit_outer(self, global_engine):
        session = get_session()
        try:
            session.add(_customer("Outer"))
            savepoint = session.begin_nested()
            session.add(_customer("Inner"))
            savepoint.commit()
            session.rollback()
        finally:
            session.close()
        assert _count() == 0

    def test_rolled_back_savepoint_keeps_outer_work(self, global_engine):
        with session_scope() as session:
            session.add(_customer("Outer"))
            session.flush()
            savepoint = session.begin_nested()
            session.add(_customer("Inner"))
            session.flush()
            savepoint.rollback()
        with get_session() as session:
            names = session.execute(select(Customer.name)).scalars().all()
        assert names == ["Outer"]
