# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for the geo updater tests."""

import os
import tempfile
from pathlib import Path

import pytest

# Set test environment variables before importing the package
_tmp_root = Path(tempfile.gettempdir()) / "geo_updater_tests"
os.environ.setdefault("DISABLE_LOGGING", "1")
os.environ.setdefault("GEO_CACHE_DIR", str(_tmp_root / "cache"))
os.environ.setdefault("GEO_WORK_DIR", str(_tmp_root / "work"))
os.environ.setdefault("POSTGRES_PASSWORD", "test")


# Skip marker for tests needing a live PostGIS
requires_db = pytest.mark.skipif(
    os.environ.get("GEO_TEST_DATABASE") != "1",
    reason="Requires PostgreSQL/PostGIS database connection (set GEO_TEST_DATABASE=1)",
)


def square(x: float, y: float, size: float = 1.0) -> list:
    """Closed polygon ring coordinates for a square with lower-left corner (x, y)."""
    return [[
        [x, y],
        [x + size, y],
        [x + size, y + size],
        [x, y + size],
        [x, y],
    ]]


def make_feature(properties: dict, geometry_type: str = "Polygon", feature_id=None) -> dict:
    coordinates = square(10.0, 50.0)
    if geometry_type == "MultiPolygon":
        coordinates = [coordinates]
    feature = {
        "type": "Feature",
        "properties": properties,
        "geometry": {"type": geometry_type, "coordinates": coordinates},
    }
    if feature_id is not None:
        feature["id"] = feature_id
    return feature


@pytest.fixture
def log_messages():
    """Capture loguru output (logging is disabled for tests by default)."""
    from loguru import logger

    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def mock_session(mocker):
    """Mock SQLAlchemy session for tests that don't need a real DB."""
    return mocker.MagicMock()


@pytest.fixture
def session_factory(mocker, mock_session):
    """Session factory always returning `mock_session`."""
    return mocker.Mock(return_value=mock_session)


@pytest.fixture
def country_feature() -> dict:
    return make_feature({"ISO_A2": "DE", "ISO_A3": "DEU", "NAME": "Germany"})


@pytest.fixture
def region_feature() -> dict:
    return make_feature({
        "iso_a2": "DE",
        "adm0_a3": "DEU",
        "name_en": "Bavaria",
        "name": "Bayern",
        "postal": "BY",
    })


@pytest.fixture
def city_feature() -> dict:
    return make_feature({
        "osm_id": "62428",
        "fclass": "city",
        "population": 1488202,
        "name": "München",
        "default_country": "DE",
    })


@pytest.fixture
def feature_collection():
    """Factory for FeatureCollection payloads."""

    def _build(count: int = 3) -> dict:
        return {
            "type": "FeatureCollection",
            "features": [
                make_feature({"ISO_A2": f"A{chr(65 + i % 26)}", "NAME": f"Country {i}"})
                for i in range(count)
            ],
        }

    return _build
