"""
Dataset loaders: where each entity type's features come from.

Each loader returns a list of GeoJSON features ready for the matching importer.
"""

import json
from pathlib import Path

from loguru import logger

from geo_updater.config import settings
from geo_updater.errors import SourceExhaustedError
from geo_updater.sources.converter import FormatConverter, build_city_filter
from geo_updater.sources.fanout import RegionalFanout
from geo_updater.sources.fetcher import SourceFetcher, geojson_validator, zip_validator
from geo_updater.sources.geofabrik import GeofabrikPathResolver
from geo_updater.utils.cancellation import CancellationToken


def _archive_name(url: str) -> str:
    return url.rsplit("/", 1)[-1].split("?")[0]


class DatasetLoader:
    """Binds fetcher, converter and fan-out to the configured sources."""

    def __init__(
        self,
        fetcher: SourceFetcher | None = None,
        converter: FormatConverter | None = None,
        resolver: GeofabrikPathResolver | None = None,
        cache_dir: Path | None = None,
        cancel: CancellationToken | None = None,
    ):
        self.cancel = cancel or CancellationToken()
        self.fetcher = fetcher or SourceFetcher(cancel=self.cancel)
        self.converter = converter or FormatConverter(cancel=self.cancel)
        self.resolver = resolver or GeofabrikPathResolver()
        self.cache_dir = Path(cache_dir or settings.pipeline.cache_dir)
        self.config = settings.pipeline

    def _load_archive(self, urls: list[str], source: str, where: str | None = None) -> list[dict]:
        dest = self.cache_dir / source / _archive_name(urls[0]) if urls else self.cache_dir / source / "archive.zip"
        archive = self.fetcher.fetch_to_file(urls, dest, validate=zip_validator)
        collection = self.converter.convert(archive, where=where)
        return collection.get("features") or []

    def _load_geojson(self, urls: list[str]) -> list[dict]:
        payload = self.fetcher.fetch(urls, validate=geojson_validator)
        return json.loads(payload)["features"]

    def load_countries(self) -> list[dict]:
        """GeoJSON mirrors first, then the Natural Earth admin-0 archive."""
        try:
            return self._load_geojson(self.config.countries_url_list)
        except SourceExhaustedError as e:
            logger.warning(f"Country GeoJSON sources exhausted ({e}), falling back to Natural Earth shapefile")
            return self._load_archive(self.config.countries_shapefile_url_list, "naturalearth")

    def load_regions(self) -> list[dict]:
        return self._load_archive(self.config.regions_url_list, "naturalearth")

    def load_cities(self, country_codes: list[str]) -> list[dict]:
        """Fan out over the Geofabrik extracts of `country_codes`; all-or-nothing."""
        parts = self.resolver.resolve_many(country_codes)
        if not parts:
            logger.warning("No Geofabrik extracts resolved for the requested countries, no cities to load")
            return []

        fanout = RegionalFanout(
            fetcher=self.fetcher,
            converter=self.converter,
            where=build_city_filter(self.config.city_feature_class_list, self.config.city_min_population),
            cache_dir=self.cache_dir / "geofabrik",
            cancel=self.cancel,
        )
        return fanout.run(parts)

    def load_timezones(self) -> list[dict] | None:
        """Timezone polygons, or None when no source is configured."""
        urls = self.config.timezones_url_list
        if not urls:
            return None
        return self._load_geojson(urls)
