import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from firmledger.app.db import Base
import firmledger.app.models  # noqa: F401


VERSIONS_DIR = Path(__file__).resolve().parents[2] / "alembic" / "versions"


def _load_migrations():
    modules = []
    for path in sorted(VERSIONS_DIR.glob("*.py")):
        spec = importlib.util.spec_from_file_location(path.stem, path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        modules.append(module)
    return modules


def test_alembic_single_head():
    modules = _load_migrations()
    revisions = {module.revision for module in modules}
    parents = {module.down_revision for module in modules if module.down_revision}
    assert len(revisions - parents) == 1
    assert parents <= revisions


def test_migration_matches_models(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}", future=True)
    with engine.begin() as conn:
        context = MigrationContext.configure(conn)
        with Operations.context(context):
            for module in _load_migrations():
                module.upgrade()

    migrated = inspect(engine)
    for table in Base.metadata.sorted_tables:
        assert table.name in migrated.get_table_names()
        migrated_columns = {column["name"] for column in migrated.get_columns(table.name)}
        assert migrated_columns == {column.name for column in table.columns}
        migrated_indexes = {index["name"] for index in migrated.get_indexes(table.name)}
        assert {index.name for index in table.indexes} <= migrated_indexes
    engine.dispose()


def test_sqlite_bootstrap_creates_tables(tmp_path):
    db_path = tmp_path / "bootstrap.db"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    assert {"wip_transactions", "drs_transactions", "analytics_cache_entries"} <= tables
    engine.dispose()
