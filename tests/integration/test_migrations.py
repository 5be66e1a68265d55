"""Test Alembic migrations: upgrade, downgrade, and structural checks.

Runs against a throwaway SQLite file, so no database server is needed.
"""

import os

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from approvable.db.base import Base
from approvable.db.models import Approval


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ALEMBIC_INI = os.path.join(os.path.dirname(__file__), "..", "..", "alembic.ini")

EXPECTED_COLUMNS = {
    "id", "approvable_type", "approvable_id", "operation",
    "original_data", "new_data", "state",
    "creator_type", "creator_id", "approver_type", "approver_id",
    "approved_at", "rolled_back_at", "created_at", "updated_at",
}


@pytest.fixture()
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'migrations.db'}"


@pytest.fixture()
def alembic_cfg(database_url):
    cfg = Config(ALEMBIC_INI)
    cfg.set_main_option("sqlalchemy.url", database_url)
    # keep pytest's log capture intact
    cfg.attributes["configure_logger"] = False
    return cfg


def _inspect(database_url):
    engine = create_engine(database_url)
    inspector = inspect(engine)
    return engine, inspector


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestMigrations:
    """Run upgrade -> verify -> downgrade -> verify cycle."""

    def test_upgrade_creates_approvals(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        engine, inspector = _inspect(database_url)
        tables = set(inspector.get_table_names())
        engine.dispose()

        assert "approvals" in tables
        assert "alembic_version" in tables

    def test_upgrade_is_idempotent(self, alembic_cfg):
        command.upgrade(alembic_cfg, "head")
        command.upgrade(alembic_cfg, "head")

    def test_approvals_columns(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        engine, inspector = _inspect(database_url)
        cols = {c["name"] for c in inspector.get_columns("approvals")}
        engine.dispose()

        assert cols == EXPECTED_COLUMNS

    def test_columns_match_model(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        engine, inspector = _inspect(database_url)
        cols = {c["name"] for c in inspector.get_columns("approvals")}
        engine.dispose()

        assert cols == {column.name for column in Approval.__table__.columns}

    def test_indexes(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        engine, inspector = _inspect(database_url)
        idx = {i["name"] for i in inspector.get_indexes("approvals")}
        engine.dispose()

        assert {
            "ix_approvals_state",
            "ix_approvals_created_at",
            "ix_approvals_approvable",
            "ix_approvals_creator",
        } <= idx

    def test_downgrade_removes_approvals(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")
        command.downgrade(alembic_cfg, "base")

        engine, inspector = _inspect(database_url)
        tables = set(inspector.get_table_names())
        engine.dispose()

        assert "approvals" not in tables

    def test_upgrade_after_downgrade(self, alembic_cfg, database_url):
        """Full round-trip: upgrade -> downgrade -> upgrade."""
        command.upgrade(alembic_cfg, "head")
        command.downgrade(alembic_cfg, "base")
        command.upgrade(alembic_cfg, "head")

        engine, inspector = _inspect(database_url)
        assert "approvals" in inspector.get_table_names()
        engine.dispose()

    def test_metadata_has_approvals(self):
        assert "approvals" in Base.metadata.tables
