"""
Pytest configuration.

Provides an isolated SQLite database per test run using a temporary file
(rather than in-memory) so the store can open one connection per operation.

Fixtures:
- db_engine (session scope): creates the engine and tables, tears them down.
- session_factory (function scope): sessionmaker over a truncated table.
- clock (function scope): FrozenClock shared by stores and handlers.
- make_store (function scope, parametrised): builds a VersionStore of a given
  kind, once with the in-memory store and once with the SQLAlchemy store.
- policy_store / resolver / admin: policy plumbing over ``make_store``.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

# Ensure the repository root is on sys.path so tests run without installing the package
CURRENT_DIR = Path(__file__).parent
REPO_ROOT = (CURRENT_DIR / "..").resolve()
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from versioned_policy.core.contracts import VersionStore  # noqa: E402
from versioned_policy.db.base import Base  # noqa: E402
from versioned_policy.db.session import create_schema, make_engine, make_session_factory  # noqa: E402
from versioned_policy.repos import InMemoryVersionStore, SqlAlchemyVersionStore  # noqa: E402
from versioned_policy.services.policy_admin import PolicyAdmin  # noqa: E402
from versioned_policy.services.policy_resolver import POLICY_KIND, PolicyResolver  # noqa: E402

from fakes import FrozenClock  # noqa: E402

T0 = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory) -> Generator:
    """
    Temporary file-based SQLite engine for the whole test session.
    """
    db_file = tmp_path_factory.mktemp("db") / "test.db"
    engine = make_engine(f"sqlite:///{db_file.as_posix()}", echo=False)
    create_schema(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """
    Fresh sessionmaker per test over an emptied table.
    """
    factory = make_session_factory(db_engine)
    with factory.begin() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
    return factory


@pytest.fixture(scope="function")
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture(scope="function", params=["memory", "sql"])
def make_store(request, clock) -> Callable[[str], VersionStore]:
    """
    Factory of stores sharing one backend per test; the same kind always
    returns the same store instance.
    """
    built: Dict[str, VersionStore] = {}

    if request.param == "memory":
        def build(kind: str) -> VersionStore:
            return InMemoryVersionStore(kind, clock=clock)
    else:
        factory = request.getfixturevalue("session_factory")

        def build(kind: str) -> VersionStore:
            return SqlAlchemyVersionStore(factory, kind, clock=clock)

    def get(kind: str = "entity") -> VersionStore:
        if kind not in built:
            built[kind] = build(kind)
        return built[kind]

    return get


@pytest.fixture
def store(make_store) -> VersionStore:
    return make_store("entity")


@pytest.fixture
def policy_store(make_store) -> VersionStore:
    return make_store(POLICY_KIND)


@pytest.fixture
def resolver(policy_store) -> PolicyResolver:
    return PolicyResolver(policy_store)


@pytest.fixture
def admin(policy_store) -> PolicyAdmin:
    return PolicyAdmin(policy_store)
