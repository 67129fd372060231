"""Geo Resolver data updater: loads country, region and city boundaries into PostGIS."""

__version__ = "1.0.0"
