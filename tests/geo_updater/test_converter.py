# SPDX-License-Identifier: MIT
"""Tests for the ogr2ogr format converter."""

import json
import subprocess
import zipfile

import pytest

from geo_updater.errors import ConversionFailedError, PipelineCancelledError
from geo_updater.sources.converter import (
    INSTALL_HINT,
    OSM_PLACES_PATTERNS,
    FormatConverter,
    build_city_filter,
    find_shapefile,
)
from geo_updater.utils.cancellation import CancellationToken


@pytest.fixture
def archive(tmp_path):
    """Zip holding a Geofabrik-style set of shapefiles."""
    path = tmp_path / "berlin-latest-free.shp.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("gis_osm_roads_free_1.shp", b"roads")
        zf.writestr("gis_osm_places_a_free_1.shp", b"places")
        zf.writestr("gis_osm_places_a_free_1.dbf", b"attrs")
    return path


@pytest.fixture
def converter(tmp_path, mocker):
    mocker.patch("geo_updater.sources.converter.shutil.which", return_value="/usr/bin/ogr2ogr")
    return FormatConverter(ogr2ogr_path="ogr2ogr", timeout=60, work_dir=tmp_path / "work")


def writes_output(features):
    """subprocess.run stand-in that writes a FeatureCollection to the -f GeoJSON target."""

    def _run(cmd, **kwargs):
        with open(cmd[3], "w", encoding="utf-8") as f:
            json.dump({"type": "FeatureCollection", "features": features}, f)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    return _run


class TestBuildCityFilter:
    """Test the -where predicate."""

    def test_classes_and_population(self):
        assert build_city_filter(["city", "town"], 10000) == "fclass IN ('city', 'town') OR population >= 10000"

    def test_classes_only(self):
        assert build_city_filter(["city"], None) == "fclass IN ('city')"

    def test_escapes_quotes(self):
        assert build_city_filter(["o'brien"], 0) == "fclass IN ('o''brien')"

    def test_empty(self):
        assert build_city_filter([], None) == ""


class TestFindShapefile:
    """Test shapefile selection inside an extracted archive."""

    def test_prefers_place_areas(self, tmp_path):
        (tmp_path / "gis_osm_roads_free_1.shp").write_bytes(b"")
        (tmp_path / "gis_osm_places_a_free_1.shp").write_bytes(b"")

        assert find_shapefile(tmp_path, OSM_PLACES_PATTERNS).name == "gis_osm_places_a_free_1.shp"

    def test_falls_back_to_any_shapefile(self, tmp_path):
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "ne_10m_admin_1.shp").write_bytes(b"")

        assert find_shapefile(tmp_path, OSM_PLACES_PATTERNS).name == "ne_10m_admin_1.shp"

    def test_none_found(self, tmp_path):
        assert find_shapefile(tmp_path, ("*.shp",)) is None


class TestFormatConverter:
    """Test conversion through a mocked ogr2ogr process."""

    def test_build_command_with_filter(self, converter, tmp_path):
        cmd = converter.build_command(tmp_path / "in.shp", tmp_path / "out.geojson", "population >= 1")

        assert cmd[:4] == ["ogr2ogr", "-f", "GeoJSON", str(tmp_path / "out.geojson")]
        assert cmd[4] == str(tmp_path / "in.shp")
        assert cmd[-2:] == ["-where", "population >= 1"]

    def test_build_command_without_filter(self, converter, tmp_path):
        cmd = converter.build_command(tmp_path / "in.shp", tmp_path / "out.geojson")
        assert "-where" not in cmd

    def test_convert_returns_collection(self, converter, archive, mocker):
        run = mocker.patch(
            "geo_updater.sources.converter.subprocess.run",
            side_effect=writes_output([{"type": "Feature", "properties": {"name": "Berlin"}, "geometry": None}]),
        )

        collection = converter.convert(archive, where="fclass IN ('city')", patterns=OSM_PLACES_PATTERNS)

        assert collection["features"][0]["properties"]["name"] == "Berlin"
        cmd = run.call_args.args[0]
        assert cmd[4].endswith("gis_osm_places_a_free_1.shp")
        assert cmd[-1] == "fclass IN ('city')"
        assert run.call_args.kwargs["check"] is True
        assert run.call_args.kwargs["timeout"] == 60

    def test_temp_files_removed(self, converter, archive, mocker, tmp_path):
        mocker.patch("geo_updater.sources.converter.subprocess.run", side_effect=writes_output([]))

        converter.convert(archive)

        assert list((tmp_path / "work").iterdir()) == []

    def test_non_zero_exit(self, converter, archive, mocker):
        mocker.patch(
            "geo_updater.sources.converter.subprocess.run",
            side_effect=subprocess.CalledProcessError(1, ["ogr2ogr"], stderr="ERROR 1: bad where\n"),
        )

        with pytest.raises(ConversionFailedError) as exc_info:
            converter.convert(archive, where="nonsense =")

        assert exc_info.value.returncode == 1
        assert exc_info.value.stderr == "ERROR 1: bad where"

    def test_timeout(self, converter, archive, mocker):
        mocker.patch(
            "geo_updater.sources.converter.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["ogr2ogr"], 60),
        )

        with pytest.raises(ConversionFailedError, match="timed out"):
            converter.convert(archive)

    def test_missing_output(self, converter, archive, mocker):
        mocker.patch(
            "geo_updater.sources.converter.subprocess.run",
            return_value=subprocess.CompletedProcess([], 0, "", ""),
        )

        with pytest.raises(ConversionFailedError, match="no output"):
            converter.convert(archive)

    def test_malformed_output(self, converter, archive, mocker):
        def truncated(cmd, **kwargs):
            with open(cmd[3], "w", encoding="utf-8") as f:
                f.write('{"type": "FeatureCollection", "features": [{"type": "Feat')
            return subprocess.CompletedProcess(cmd, 0, "", "")

        mocker.patch("geo_updater.sources.converter.subprocess.run", side_effect=truncated)

        with pytest.raises(ConversionFailedError, match="malformed GeoJSON"):
            converter.convert(archive)

    def test_tool_not_installed(self, archive, mocker, tmp_path):
        mocker.patch("geo_updater.sources.converter.shutil.which", return_value=None)
        run = mocker.patch("geo_updater.sources.converter.subprocess.run")

        with pytest.raises(ConversionFailedError) as exc_info:
            FormatConverter(work_dir=tmp_path / "work").convert(archive)

        assert str(exc_info.value) == INSTALL_HINT
        run.assert_not_called()

    def test_bad_archive(self, converter, tmp_path):
        broken = tmp_path / "broken.zip"
        broken.write_bytes(b"<html>not a zip</html>")

        with pytest.raises(ConversionFailedError, match="Cannot extract"):
            converter.convert(broken)

    def test_archive_without_shapefile(self, converter, tmp_path):
        path = tmp_path / "empty.zip"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("README.txt", b"nothing here")

        with pytest.raises(ConversionFailedError, match="No shapefile"):
            converter.convert(path)

    def test_cancelled(self, archive, mocker, tmp_path):
        token = CancellationToken()
        token.cancel()
        run = mocker.patch("geo_updater.sources.converter.subprocess.run")

        with pytest.raises(PipelineCancelledError):
            FormatConverter(work_dir=tmp_path / "work", cancel=token).convert(archive)
        run.assert_not_called()
