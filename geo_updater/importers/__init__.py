"""Wholesale importers for the reference geometry tables."""

from geo_updater.importers.base import BaseImporter, ImportResult, clear_all_tables
from geo_updater.importers.cities import CityImporter
from geo_updater.importers.countries import CountryImporter
from geo_updater.importers.regions import RegionImporter
from geo_updater.importers.timezones import TimezoneImporter

__all__ = [
    "BaseImporter",
    "ImportResult",
    "clear_all_tables",
    "CountryImporter",
    "RegionImporter",
    "CityImporter",
    "TimezoneImporter",
]
