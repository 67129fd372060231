"""Source acquisition: mirror fallback, format conversion and regional fan-out."""

from geo_updater.sources.converter import FormatConverter, build_city_filter
from geo_updater.sources.datasets import DatasetLoader
from geo_updater.sources.fanout import PartResult, RegionalFanout
from geo_updater.sources.fetcher import SourceFetcher, geojson_validator, zip_validator
from geo_updater.sources.geofabrik import GeofabrikPathResolver, RegionalPart

__all__ = [
    "DatasetLoader",
    "SourceFetcher",
    "geojson_validator",
    "zip_validator",
    "FormatConverter",
    "build_city_filter",
    "RegionalFanout",
    "PartResult",
    "GeofabrikPathResolver",
    "RegionalPart",
]
