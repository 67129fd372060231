"""
Geofabrik download path resolution.

Most countries ship as one shapefile archive. Russia only exists as
per-federal-district extracts, so it resolves to several regional parts.
"""

from dataclasses import dataclass

from loguru import logger

from geo_updater.config import settings


@dataclass(frozen=True)
class RegionalPart:
    """One downloadable archive covering all or part of a country."""
    country_code: str
    path: str               # e.g. "europe/germany", "russia/ural-fed-district"

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def url(self, base_url: str | None = None) -> str:
        base_url = (base_url or settings.pipeline.geofabrik_base_url).rstrip("/")
        return f"{base_url}/{self.path}-latest-free.shp.zip"


RUSSIA_FEDERAL_DISTRICTS = [
    "central",
    "northwestern",
    "siberian",
    "ural",
    "far-eastern",
    "volga",
    "south",
    "north-caucasus",
]

COUNTRY_PATHS = {
    "DE": "europe/germany",
    "FR": "europe/france",
    "IT": "europe/italy",
    "ES": "europe/spain",
    "PT": "europe/portugal",
    "PL": "europe/poland",
    "NL": "europe/netherlands",
    "BE": "europe/belgium",
    "LU": "europe/luxembourg",
    "AT": "europe/austria",
    "CH": "europe/switzerland",
    "CZ": "europe/czech-republic",
    "SK": "europe/slovakia",
    "HU": "europe/hungary",
    "SI": "europe/slovenia",
    "HR": "europe/croatia",
    "RS": "europe/serbia",
    "BA": "europe/bosnia-herzegovina",
    "ME": "europe/montenegro",
    "AL": "europe/albania",
    "MK": "europe/macedonia",
    "GR": "europe/greece",
    "BG": "europe/bulgaria",
    "RO": "europe/romania",
    "UA": "europe/ukraine",
    "BY": "europe/belarus",
}


def is_valid_alpha2(code: str | None) -> bool:
    return bool(code) and len(code) == 2 and code.isascii() and code.isalpha()


class GeofabrikPathResolver:
    """Maps ISO alpha-2 codes to the Geofabrik extracts covering them."""

    def __init__(self, country_paths: dict[str, str] | None = None):
        self.country_paths = country_paths if country_paths is not None else COUNTRY_PATHS

    def resolve(self, country_code: str) -> list[RegionalPart]:
        """
        Return the regional parts for a country.

        Raises:
            ValueError: if `country_code` is not a two-letter code

        Returns:
            One part for most countries, several for Russia, none if unmapped
        """
        if not is_valid_alpha2(country_code):
            raise ValueError(f"Country code must be a 2-letter ISO alpha-2 code, got {country_code!r}")

        code = country_code.upper()

        if code == "RU":
            return [
                RegionalPart(code, f"russia/{district}-fed-district")
                for district in RUSSIA_FEDERAL_DISTRICTS
            ]

        path = self.country_paths.get(code)
        if path is None:
            logger.warning(f"No Geofabrik extract mapped for {code}, skipping")
            return []
        return [RegionalPart(code, path)]

    def resolve_many(self, country_codes: list[str]) -> list[RegionalPart]:
        """Resolve a list of codes, skipping invalid and unmapped ones."""
        parts = []
        for raw in country_codes:
            if not is_valid_alpha2(raw):
                logger.warning(f"Skipping invalid country code in city allow-list: {raw!r}")
                continue
            parts.extend(self.resolve(raw))
        return parts
