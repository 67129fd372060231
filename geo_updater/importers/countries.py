"""
Country importer.

Accepts both plain GeoJSON country collections and Natural Earth admin-0
features converted from shapefile; they disagree on field names.
"""

from typing import Any

from geo_updater.errors import FeatureInvalidError
from geo_updater.importers.base import BaseImporter, first_code, first_value, geometry_json


ALPHA2_FIELDS = ("ISO_A2", "ISO", "iso_a2", "iso_a2_eh", "ISO_A2_EH")
ALPHA3_FIELDS = ("ISO_A3", "ISO", "iso_a3", "ADM0_A3", "adm0_a3")
NAME_FIELDS = ("NAME", "NAME_LONG", "name", "ADMIN")


class CountryImporter(BaseImporter):
    """Imports countries keyed by ISO alpha-2 and/or alpha-3 code."""

    entity = "countries"
    table = "countries"
    insert_sql = """
        INSERT INTO countries (iso_alpha2_code, iso_alpha3_code, name_latin, geometry)
        VALUES (:iso_alpha2_code, :iso_alpha3_code, :name_latin,
                ST_SetSRID(ST_GeomFromGeoJSON(:geometry), 4326))
    """

    def extract(self, feature: dict) -> dict[str, Any]:
        properties = feature.get("properties") or {}

        alpha2 = first_code(properties, ALPHA2_FIELDS, 2)
        alpha3 = first_code(properties, ALPHA3_FIELDS, 3)

        # Some collections only carry the code as the feature id
        feature_id = feature.get("id")
        if isinstance(feature_id, str) and feature_id.isalpha():
            if len(feature_id) == 3 and alpha3 is None:
                alpha3 = feature_id.upper()
            elif len(feature_id) == 2 and alpha2 is None:
                alpha2 = feature_id.upper()

        if alpha2 is None and alpha3 is None:
            raise FeatureInvalidError("missing ISO code")

        return {
            "iso_alpha2_code": alpha2,
            "iso_alpha3_code": alpha3,
            "name_latin": (first_value(properties, NAME_FIELDS) or "Unknown")[:255],
            "geometry": geometry_json(feature),
        }

    def natural_keys(self, record: dict[str, Any]) -> list[tuple]:
        keys = []
        if record["iso_alpha2_code"]:
            keys.append(("a2", record["iso_alpha2_code"]))
        if record["iso_alpha3_code"]:
            keys.append(("a3", record["iso_alpha3_code"]))
        return keys
