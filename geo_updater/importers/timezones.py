"""Timezone importer. Idle unless a timezone source URL is configured."""

from typing import Any

from geo_updater.errors import FeatureInvalidError
from geo_updater.importers.base import BaseImporter, first_value, geometry_json


TZID_FIELDS = ("tzid", "TZID", "timezone", "TIMEZONE")


class TimezoneImporter(BaseImporter):
    entity = "timezones"
    table = "timezones"
    insert_sql = """
        INSERT INTO timezones (timezone_id, geometry)
        VALUES (:timezone_id, ST_SetSRID(ST_GeomFromGeoJSON(:geometry), 4326))
    """

    def extract(self, feature: dict) -> dict[str, Any]:
        properties = feature.get("properties") or {}
        timezone_id = first_value(properties, TZID_FIELDS)
        if not timezone_id:
            raise FeatureInvalidError("missing timezone id")
        return {
            "timezone_id": timezone_id[:100],
            "geometry": geometry_json(feature),
        }

    def natural_keys(self, record: dict[str, Any]) -> list[tuple]:
        return [(record["timezone_id"],)]
