"""
City importer for OSM place areas.

Cities never get a region here; region_identifier is filled later by the
spatial backfill in post-processing.
"""

from typing import Any

from geo_updater.errors import FeatureInvalidError
from geo_updater.importers.base import BaseImporter, first_code, first_value, geometry_json
from geo_updater.sources.fanout import DEFAULT_COUNTRY_PROPERTY
from geo_updater.utils.text import contains_latin, normalize_identifier


ALPHA2_FIELDS = ("ISO3166-1:alpha2", "ISO3166-1", "addr:country", "ISO_A2", "iso_a2")
ALPHA3_FIELDS = ("ISO3166-1:alpha3", "ISO3166-1", "ADM0_A3", "adm0_a3")
ASCII_NAME_FIELDS = ("NAMEASCII", "nameascii", "name_en")
NATIVE_NAME_FIELDS = ("NAME", "name")
NUMERIC_ID_FIELDS = ("GEONAMEID", "geonameid", "GN_ID")


def _numeric_id(properties: dict) -> str | None:
    for name in NUMERIC_ID_FIELDS:
        value = properties.get(name)
        if value is None or isinstance(value, bool):
            continue
        try:
            number = int(float(value))
        except (TypeError, ValueError):
            continue
        if number > 0:
            return str(number)
    return None


def pick_city_name(properties: dict) -> str | None:
    """
    Prefer explicit ASCII names, then native names that are already Latin,
    then any native name (left for transliteration).
    """
    name = first_value(properties, ASCII_NAME_FIELDS)
    if name:
        return name

    for field_name in NATIVE_NAME_FIELDS:
        value = first_value(properties, (field_name,))
        if contains_latin(value):
            return value

    return first_value(properties, NATIVE_NAME_FIELDS)


class CityImporter(BaseImporter):
    """Imports city polygons; the owning country may come from the fan-out part."""

    entity = "cities"
    table = "cities"
    insert_sql = """
        INSERT INTO cities (identifier, name_latin, country_iso_alpha2_code, country_iso_alpha3_code,
                            region_identifier, geometry)
        VALUES (:identifier, :name_latin, :country_iso_alpha2_code, :country_iso_alpha3_code,
                NULL, ST_SetSRID(ST_GeomFromGeoJSON(:geometry), 4326))
    """

    def extract(self, feature: dict) -> dict[str, Any]:
        properties = feature.get("properties") or {}

        alpha2 = first_code(properties, ALPHA2_FIELDS, 2)
        alpha3 = first_code(properties, ALPHA3_FIELDS, 3)
        if alpha2 is None:
            alpha2 = first_code(properties, (DEFAULT_COUNTRY_PROPERTY,), 2)

        if alpha2 is None and alpha3 is None:
            raise FeatureInvalidError("missing country code")

        name = pick_city_name(properties)
        if not name:
            raise FeatureInvalidError("missing name")

        raw_identifier = (
            _numeric_id(properties)
            or first_value(properties, ("osm_id",))
            or f"{name}_{alpha2 or alpha3}"
        )
        identifier = normalize_identifier(raw_identifier)[:100]
        if not identifier:
            raise FeatureInvalidError("empty identifier")

        return {
            "identifier": identifier,
            "name_latin": name[:255],
            "country_iso_alpha2_code": alpha2,
            "country_iso_alpha3_code": alpha3,
            "geometry": geometry_json(feature),
        }

    def natural_keys(self, record: dict[str, Any]) -> list[tuple]:
        return [(
            record["identifier"],
            record["country_iso_alpha2_code"],
            record["country_iso_alpha3_code"],
        )]
