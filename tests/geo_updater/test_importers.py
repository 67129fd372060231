# SPDX-License-Identifier: MIT
"""Tests for the table importers (database calls are mocked)."""

import json

import pytest
from conftest import make_feature
from sqlalchemy.exc import IntegrityError

from geo_updater.errors import FeatureInvalidError
from geo_updater.importers import CityImporter, CountryImporter, RegionImporter, TimezoneImporter
from geo_updater.importers.base import clear_all_tables, first_code
from geo_updater.importers.cities import pick_city_name


def executed_sql(session) -> list[str]:
    return [str(call.args[0]).strip() for call in session.execute.call_args_list]


def inserted_rows(session) -> list[dict]:
    rows = []
    for call in session.execute.call_args_list:
        if len(call.args) > 1:
            rows.extend(call.args[1])
    return rows


class TestFirstCode:
    """Test ISO code selection."""

    def test_skips_natural_earth_placeholder(self):
        assert first_code({"ISO_A2": "-99", "iso_a2_eh": "fr"}, ("ISO_A2", "iso_a2_eh"), 2) == "FR"

    def test_length_must_match(self):
        assert first_code({"ISO": "DEU"}, ("ISO",), 2) is None
        assert first_code({"ISO": "DEU"}, ("ISO",), 3) == "DEU"

    def test_non_strings_ignored(self):
        assert first_code({"ISO_A2": 42}, ("ISO_A2",), 2) is None


class TestCountryImporter:
    """Test country extraction and wholesale replacement."""

    def test_extract(self, mock_session, country_feature):
        record = CountryImporter(session=mock_session).extract(country_feature)

        assert record["iso_alpha2_code"] == "DE"
        assert record["iso_alpha3_code"] == "DEU"
        assert record["name_latin"] == "Germany"
        assert json.loads(record["geometry"])["type"] == "MultiPolygon"

    def test_code_from_feature_id(self, mock_session):
        record = CountryImporter(session=mock_session).extract(make_feature({"name": "France"}, feature_id="FRA"))

        assert record["iso_alpha2_code"] is None
        assert record["iso_alpha3_code"] == "FRA"

    def test_missing_name_defaults(self, mock_session):
        record = CountryImporter(session=mock_session).extract(make_feature({"ISO_A2": "XK"}))
        assert record["name_latin"] == "Unknown"

    def test_missing_codes_invalid(self, mock_session):
        with pytest.raises(FeatureInvalidError, match="missing ISO code"):
            CountryImporter(session=mock_session).extract(make_feature({"NAME": "Nowhere", "ISO_A2": "-99"}))

    def test_point_geometry_invalid(self, mock_session):
        feature = {"type": "Feature", "properties": {"ISO_A2": "DE"}, "geometry": {"type": "Point", "coordinates": [0, 0]}}

        with pytest.raises(FeatureInvalidError, match="Point"):
            CountryImporter(session=mock_session).extract(feature)

    def test_import_deletes_then_inserts(self, mock_session, country_feature):
        result = CountryImporter(session=mock_session).import_features([country_feature])

        statements = executed_sql(mock_session)
        assert statements[0] == "DELETE FROM countries"
        assert statements[1].startswith("INSERT INTO countries")
        assert result.success is True
        assert result.rows_written == 1
        mock_session.commit.assert_called_once()

    def test_invalid_features_are_skipped(self, mock_session, country_feature, log_messages):
        features = [country_feature, make_feature({"NAME": "No code"}), make_feature({"ISO_A2": "FR", "NAME": "France"})]

        result = CountryImporter(session=mock_session).import_features(features)

        assert result.features_seen == 3
        assert result.rows_written == 2
        assert result.skipped == 1
        assert result.skip_reasons["missing ISO code"] == 1
        assert [r["iso_alpha2_code"] for r in inserted_rows(mock_session)] == ["DE", "FR"]
        assert any("#1" in m["message"] for m in log_messages if m["level"].name == "WARNING")

    def test_duplicate_codes_keep_first(self, mock_session, country_feature):
        duplicate = make_feature({"ISO_A2": "DE", "NAME": "Germany again"})

        result = CountryImporter(session=mock_session).import_features([country_feature, duplicate])

        assert result.rows_written == 1
        assert result.skip_reasons["duplicate key"] == 1
        assert inserted_rows(mock_session)[0]["name_latin"] == "Germany"

    def test_reimport_is_idempotent(self, mocker, country_feature):
        first_session, second_session = mocker.MagicMock(), mocker.MagicMock()
        features = [country_feature, make_feature({"ISO_A2": "FR", "NAME": "France"})]

        first = CountryImporter(session=first_session).import_features(features)
        second = CountryImporter(session=second_session).import_features(features)

        assert first.rows_written == second.rows_written == 2
        assert inserted_rows(first_session) == inserted_rows(second_session)
        assert executed_sql(second_session)[0] == "DELETE FROM countries"

    def test_batches(self, mock_session):
        features = [make_feature({"ISO_A2": code, "NAME": code}) for code in ("AA", "BB", "CC", "DD", "EE")]

        CountryImporter(session=mock_session, batch_size=2).import_features(features)

        batch_sizes = [len(call.args[1]) for call in mock_session.execute.call_args_list if len(call.args) > 1]
        assert batch_sizes == [2, 2, 1]

    def test_rollback_on_database_error(self, mock_session, country_feature):
        mock_session.execute.side_effect = [None, IntegrityError("INSERT", {}, Exception("duplicate"))]

        with pytest.raises(IntegrityError):
            CountryImporter(session=mock_session).import_features([country_feature])

        mock_session.rollback.assert_called_once()
        mock_session.commit.assert_not_called()

    def test_owned_session_closed(self, mocker):
        session = mocker.MagicMock()
        mocker.patch("geo_updater.importers.base.SessionLocal", return_value=session)

        with CountryImporter():
            pass

        session.close.assert_called_once()

    def test_borrowed_session_left_open(self, mock_session):
        with CountryImporter(session=mock_session):
            pass
        mock_session.close.assert_not_called()


class TestRegionImporter:
    """Test region extraction."""

    def test_postal_identifier(self, mock_session, region_feature):
        record = RegionImporter(session=mock_session).extract(region_feature)

        assert record["identifier"] == "BY"
        assert record["name_latin"] == "Bavaria"
        assert record["country_iso_alpha2_code"] == "DE"
        assert record["country_iso_alpha3_code"] == "DEU"

    def test_name_identifier_without_postal(self, mock_session):
        record = RegionImporter(session=mock_session).extract(
            make_feature({"iso_a2": "DE", "name_en": "Baden-Württemberg", "postal": "-99"})
        )
        assert record["identifier"] == "Baden_W_rttemberg_DE"

    def test_alpha3_looked_up_from_countries(self, mock_session):
        mock_session.execute.return_value.all.return_value = [("FR", "FRA")]
        importer = RegionImporter(session=mock_session)
        importer.prepare()

        record = importer.extract(make_feature({"iso_a2": "FR", "name": "Bretagne", "postal": "BRE"}))

        assert record["country_iso_alpha3_code"] == "FRA"

    @pytest.mark.parametrize("properties,reason", [
        ({"name": "Somewhere"}, "missing country code"),
        ({"iso_a2": "DE"}, "missing name"),
        ({"iso_a2": "DE", "name": "Unknown"}, "missing name"),
    ])
    def test_invalid(self, mock_session, properties, reason):
        with pytest.raises(FeatureInvalidError, match=reason):
            RegionImporter(session=mock_session).extract(make_feature(properties))

    def test_same_identifier_in_two_countries(self, mock_session):
        features = [
            make_feature({"iso_a2": "US", "name": "Georgia", "postal": "GA"}),
            make_feature({"iso_a2": "GA", "name": "Estuaire", "postal": "GA"}),
        ]

        result = RegionImporter(session=mock_session).import_features(features)

        assert result.rows_written == 2
        assert "SELECT iso_alpha2_code" in executed_sql(mock_session)[0]
        assert executed_sql(mock_session)[1] == "DELETE FROM regions"


class TestCityImporter:
    """Test city extraction."""

    def test_default_country_and_osm_id(self, mock_session, city_feature):
        record = CityImporter(session=mock_session).extract(city_feature)

        assert record["identifier"] == "62428"
        assert record["country_iso_alpha2_code"] == "DE"
        assert record["country_iso_alpha3_code"] is None
        assert record["name_latin"] == "München"

    def test_explicit_country_wins(self, mock_session):
        record = CityImporter(session=mock_session).extract(
            make_feature({"osm_id": "1", "name": "Basel", "ISO3166-1:alpha2": "CH", "default_country": "DE"})
        )
        assert record["country_iso_alpha2_code"] == "CH"

    def test_geonames_id_preferred(self, mock_session):
        record = CityImporter(session=mock_session).extract(
            make_feature({"GEONAMEID": 2950159.0, "osm_id": "240109189", "name": "Berlin", "default_country": "DE"})
        )
        assert record["identifier"] == "2950159"

    def test_name_identifier_fallback(self, mock_session):
        record = CityImporter(session=mock_session).extract(
            make_feature({"name": "New York", "default_country": "US"})
        )
        assert record["identifier"] == "New_York_US"

    def test_missing_country_invalid(self, mock_session):
        with pytest.raises(FeatureInvalidError, match="missing country code"):
            CityImporter(session=mock_session).extract(make_feature({"osm_id": "1", "name": "Atlantis"}))

    def test_insert_leaves_region_empty(self, mock_session, city_feature):
        CityImporter(session=mock_session).import_features([city_feature])

        insert = executed_sql(mock_session)[1]
        assert "NULL, ST_SetSRID" in insert


class TestPickCityName:
    """Test city name preference."""

    def test_ascii_name_first(self):
        assert pick_city_name({"name_en": "Moscow", "name": "Москва"}) == "Moscow"

    def test_latin_native_name(self):
        assert pick_city_name({"NAME": "Москва", "name": "Moskau"}) == "Moskau"

    def test_non_latin_kept_for_transliteration(self):
        assert pick_city_name({"name": "Москва"}) == "Москва"

    def test_none(self):
        assert pick_city_name({}) is None


class TestTimezoneImporter:
    """Test timezone extraction."""

    def test_extract(self, mock_session):
        record = TimezoneImporter(session=mock_session).extract(make_feature({"tzid": "Europe/Berlin"}))
        assert record["timezone_id"] == "Europe/Berlin"

    def test_missing_tzid(self, mock_session):
        with pytest.raises(FeatureInvalidError):
            TimezoneImporter(session=mock_session).extract(make_feature({}))


def test_clear_all_tables(mock_session):
    clear_all_tables(mock_session)

    statements = executed_sql(mock_session)
    assert all(s.startswith("TRUNCATE TABLE") and s.endswith("RESTART IDENTITY CASCADE") for s in statements)
    assert any("cities" in s for s in statements)
