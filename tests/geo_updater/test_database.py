# SPDX-License-Identifier: MIT
"""Tests for database module."""

from datetime import datetime, timezone

import pytest
from conftest import requires_db
from sqlalchemy import text

from geo_updater.config import DatabaseSettings
from geo_updater.database import (
    ENTITY_TABLES,
    Base,
    City,
    Country,
    Region,
    get_last_update,
    get_session,
    get_table_counts,
    set_last_update,
)


class TestDatabaseConnection:
    """Test database connection utilities."""

    def test_database_url_from_env(self, monkeypatch):
        """Database URL should be configurable via environment."""
        monkeypatch.setenv("POSTGRES_HOST", "db.internal")
        monkeypatch.setenv("POSTGRES_PORT", "6543")
        monkeypatch.setenv("POSTGRES_DB", "geo")

        url = DatabaseSettings().url

        assert url.startswith("postgresql://")
        assert url.endswith("@db.internal:6543/geo")

    def test_get_session_commits(self, mock_session, session_factory):
        with get_session(session_factory) as session:
            assert session is mock_session

        mock_session.commit.assert_called_once()
        mock_session.rollback.assert_not_called()
        mock_session.close.assert_called_once()

    def test_get_session_rolls_back_and_reraises(self, mock_session, session_factory):
        with pytest.raises(RuntimeError):
            with get_session(session_factory):
                raise RuntimeError("boom")

        mock_session.rollback.assert_called_once()
        mock_session.commit.assert_not_called()
        mock_session.close.assert_called_once()


class TestDatabaseModels:
    """Test database model definitions."""

    def test_tables_registered(self):
        assert set(ENTITY_TABLES) | {"last_update"} == set(Base.metadata.tables)

    def test_country_codes_unique(self):
        columns = Country.__table__.c
        assert columns.iso_alpha2_code.unique is True
        assert columns.iso_alpha3_code.unique is True

    def test_region_unique_per_country(self):
        names = {c.name for c in Region.__table__.constraints}
        assert {"uq_regions_identifier_a2", "uq_regions_identifier_a3", "ck_regions_has_code"} <= names

    def test_city_region_nullable(self):
        assert City.__table__.c.region_identifier.nullable is True

    def test_geometry_is_multipolygon(self):
        geometry = Country.__table__.c.geometry.type
        assert geometry.geometry_type == "MULTIPOLYGON"
        assert geometry.srid == 4326


class TestHelpers:
    """Test SQL helpers with a mocked session."""

    def test_set_last_update_upserts(self, mock_session):
        when = datetime(2026, 3, 1, tzinfo=timezone.utc)

        assert set_last_update(mock_session, when) == when

        statement, params = mock_session.execute.call_args.args
        assert "ON CONFLICT (id) DO UPDATE" in str(statement)
        assert params == {"updated_at": when}

    def test_set_last_update_defaults_to_now(self, mock_session):
        before = datetime.now(timezone.utc)
        assert set_last_update(mock_session) >= before

    def test_table_counts(self, mock_session):
        mock_session.execute.return_value.scalar.return_value = 7
        assert get_table_counts(mock_session) == {table: 7 for table in ENTITY_TABLES}


@requires_db
class TestLiveDatabase:
    """Round trips against a real PostGIS database."""

    def test_last_update_single_row(self):
        first = datetime(2025, 1, 1, tzinfo=timezone.utc)
        second = datetime(2026, 1, 1, tzinfo=timezone.utc)

        with get_session() as session:
            set_last_update(session, first)
        with get_session() as session:
            set_last_update(session, second)
        with get_session() as session:
            assert get_last_update(session) == second
            assert session.execute(text("SELECT COUNT(*) FROM last_update")).scalar() == 1
