import os
import pathlib
import sys
import tempfile

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))


def pytest_configure():
    if os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL"):
        return
    temp_dir = tempfile.mkdtemp(prefix="firmledger-tests-")
    db_path = pathlib.Path(temp_dir) / "pytest.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"


@pytest.fixture(scope="session")
def sqlite_engine():
    from firmledger.app.db import Base, engine
    import firmledger.app.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def sqlite_session(sqlite_engine):
    from firmledger.app.db import Base, SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        # every test starts from empty ledgers
        with sqlite_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture()
def graph_service(sqlite_engine):
    from firmledger.app.analytics.cache import InMemoryAnalyticsCache
    from firmledger.app.db import SessionLocal
    from firmledger.app.services.graph_service import GraphService
    from firmledger.app.services.ledger_query_service import SqlLedgerAdapter

    return GraphService(SqlLedgerAdapter(SessionLocal), InMemoryAnalyticsCache(), max_workers=2)


@pytest.fixture()
def api_client(sqlite_engine, sqlite_session, graph_service):
    from firmledger.app.api.deps import get_graph_service
    from firmledger.app.main import app
    from fastapi.testclient import TestClient

    app.dependency_overrides[get_graph_service] = lambda: graph_service
    client = TestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_graph_service, None)
