"""Region importer for Natural Earth admin-1 states and provinces."""

from typing import Any

from loguru import logger
from sqlalchemy import text

from geo_updater.errors import FeatureInvalidError
from geo_updater.importers.base import BaseImporter, first_code, first_value, geometry_json
from geo_updater.utils.text import normalize_identifier


ALPHA2_FIELDS = ("iso_a2", "ISO_A2", "adm0_iso", "ADM0_ISO")
ALPHA3_FIELDS = ("adm0_a3", "ADM0_A3")
NAME_FIELDS = ("name_en", "name", "NAME")
POSTAL_FIELDS = ("postal", "POSTAL", "postal_code", "POSTAL_CODE")


class RegionImporter(BaseImporter):
    """
    Imports first-order administrative regions.

    The identifier is the postal abbreviation when the source has one,
    otherwise `<name>_<country>`. It only needs to be unique per country.
    """

    entity = "regions"
    table = "regions"
    insert_sql = """
        INSERT INTO regions (identifier, name_latin, country_iso_alpha2_code, country_iso_alpha3_code, geometry)
        VALUES (:identifier, :name_latin, :country_iso_alpha2_code, :country_iso_alpha3_code,
                ST_SetSRID(ST_GeomFromGeoJSON(:geometry), 4326))
    """

    def __init__(self, session=None, batch_size: int | None = None):
        super().__init__(session=session, batch_size=batch_size)
        self.alpha3_by_alpha2: dict[str, str] = {}

    def prepare(self) -> None:
        """Load alpha-2 -> alpha-3 pairs from the already imported countries."""
        rows = self.session.execute(text("""
            SELECT iso_alpha2_code, iso_alpha3_code
            FROM countries
            WHERE iso_alpha2_code IS NOT NULL AND iso_alpha3_code IS NOT NULL
        """)).all()
        self.alpha3_by_alpha2 = {a2: a3 for a2, a3 in rows}
        logger.debug(f"Loaded {len(self.alpha3_by_alpha2)} alpha-3 codes for region lookup")

    def extract(self, feature: dict) -> dict[str, Any]:
        properties = feature.get("properties") or {}

        alpha2 = first_code(properties, ALPHA2_FIELDS, 2)
        alpha3 = first_code(properties, ALPHA3_FIELDS, 3)
        if alpha3 is None and alpha2 is not None:
            alpha3 = self.alpha3_by_alpha2.get(alpha2)

        if alpha2 is None and alpha3 is None:
            raise FeatureInvalidError("missing country code")

        name = first_value(properties, NAME_FIELDS)
        if not name or name == "Unknown":
            raise FeatureInvalidError("missing name")

        postal = first_value(properties, POSTAL_FIELDS)
        raw_identifier = postal if postal and postal != "-99" else f"{name}_{alpha2 or alpha3}"
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
        keys = []
        if record["country_iso_alpha2_code"]:
            keys.append(("a2", record["identifier"], record["country_iso_alpha2_code"]))
        if record["country_iso_alpha3_code"]:
            keys.append(("a3", record["identifier"], record["country_iso_alpha3_code"]))
        return keys
