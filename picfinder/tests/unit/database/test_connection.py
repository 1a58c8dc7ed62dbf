"""
Tests for database connection handling.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError

from picfinder.core.database import create_db_engine, init_db, normalize_database_url


class TestNormalizeDatabaseUrl:
    """Tests for normalize_database_url."""

    def test_postgres_scheme_rewritten(self):
        url = normalize_database_url("postgres://user:pw@localhost/picfinder")
        assert url.startswith("postgresql://")

    def test_memory_untouched(self):
        assert normalize_database_url("sqlite:///:memory:") == "sqlite:///:memory:"

    def test_sqlite_parent_created(self, tmp_path):
        """The directory of a SQLite file should be created on demand."""
        db_file = tmp_path / "nested" / "index.db"
        url = normalize_database_url(f"sqlite:///{db_file}")
        assert db_file.parent.is_dir()
        assert str(db_file) in url


class TestCreateEngine:
    """Tests for create_db_engine."""

    def test_file_database_uses_wal(self, tmp_path):
        engine = create_db_engine(f"sqlite:///{tmp_path / 'index.db'}")
        try:
            with engine.connect() as conn:
                mode = conn.execute(text("PRAGMA journal_mode")).scalar()
            assert mode.lower() == "wal"
        finally:
            engine.dispose()

    def test_retries_then_fails(self):
        """Connection failures should be retried and then raise RuntimeError."""
        with patch("picfinder.core.database.connection.create_engine") as mock_create, \
                patch("picfinder.core.database.connection.time.sleep") as mock_sleep:
            mock_create.return_value.connect.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

            with pytest.raises(RuntimeError, match="Failed to connect"):
                create_db_engine("postgresql://localhost/picfinder", max_retries=3, retry_delay=0.5)

        assert mock_create.call_count == 3
        assert mock_sleep.call_count == 2


class TestInitDb:
    """Tests for init_db."""

    def test_tables_created(self):
        db = init_db("sqlite:///:memory:", max_retries=1, retry_delay=0)
        try:
            tables = set(inspect(db.engine).get_table_names())
            assert {"watched_folders", "indexed_images"} <= tables
        finally:
            db.close()

    def test_sessions_share_memory_database(self):
        """All sessions must see the same in-memory database."""
        db = init_db("sqlite:///:memory:", max_retries=1, retry_delay=0)
        try:
            with db.session() as first:
                first.execute(text(
                    "INSERT INTO watched_folders (folder_path, display_name, last_scan_date, image_count, is_active) "
                    "VALUES ('/a', 'a', 0, 0, 1)"
                ))
                first.commit()
            with db.session() as second:
                count = second.execute(text("SELECT COUNT(*) FROM watched_folders")).scalar()
            assert count == 1
        finally:
            db.close()
