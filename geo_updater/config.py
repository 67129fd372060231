"""
Configuration management for the geo data updater.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from pathlib import Path
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user: str = "geo_resolver"
    password: str = ""  # Required: Set POSTGRES_PASSWORD in .env
    host: str = "localhost"
    port: int = 5432
    db: str = "geo_resolver"

    # Pool sizing; fan-out branches never hold connections, so this stays small
    pool_size: int = 5
    max_overflow: int = 10
    statement_timeout_ms: int = 600000

    @property
    def url(self) -> str:
        """Construct database URL."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class PipelineSettings(BaseSettings):
    """Data update pipeline settings."""

    model_config = SettingsConfigDict(
        env_prefix="GEO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directories
    cache_dir: Path = Field(default=Path("./cache"))
    work_dir: Path = Field(default=Path("./data/work"))

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    # HTTP settings
    http_timeout: int = 300  # seconds, per URL attempt

    # Source URLs (comma-separated, tried in order)
    countries_urls: str = (
        "https://raw.githubusercontent.com/holtzy/D3-graph-gallery/master/DATA/world.geojson,"
        "https://raw.githubusercontent.com/datasets/geo-countries/main/data/countries.geojson"
    )
    countries_shapefile_urls: str = (
        "http://www.naturalearthdata.com/http//www.naturalearthdata.com/download/10m/cultural/ne_10m_admin_0_countries.zip,"
        "https://naciscdn.org/naturalearth/10m/cultural/ne_10m_admin_0_countries.zip,"
        "https://d2ad6b4ur7yvpq.cloudfront.net/naturalearth-3.3.0/ne_10m_admin_0_countries.zip"
    )
    regions_urls: str = (
        "http://www.naturalearthdata.com/http//www.naturalearthdata.com/download/10m/cultural/ne_10m_admin_1_states_provinces.zip,"
        "https://naciscdn.org/naturalearth/10m/cultural/ne_10m_admin_1_states_provinces.zip,"
        "https://d2ad6b4ur7yvpq.cloudfront.net/naturalearth-3.3.0/ne_10m_admin_1_states_provinces.zip"
    )
    timezones_urls: str = ""  # Empty: timezone stage is a no-op
    geofabrik_base_url: str = "https://download.geofabrik.de"

    # City ingestion scope (empty = every alpha-2 code in the countries table)
    city_countries: str = ""
    city_feature_classes: str = "city,town,national_capital"
    city_min_population: int = 10000

    # External conversion tool
    ogr2ogr_path: str = "ogr2ogr"
    ogr2ogr_timeout: int = 1800  # seconds

    # Regional fan-out
    fanout_max_workers: int = 4

    # Exclusivity
    lock_name: str = "geo_resolver_data_update"
    lock_timeout_seconds: float = 30.0
    lock_poll_interval: float = 1.0

    # Import
    import_batch_size: int = 1000

    # Post-processing
    transliteration_batch_size: int = 500
    transliteration_max_rows: int = 10000

    # Scheduling
    update_interval_days: int = 365
    update_on_start: bool = True
    check_interval_seconds: int = 3600

    @field_validator("cache_dir", "work_dir", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert string to Path and ensure directory exists."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def countries_url_list(self) -> list[str]:
        return _split_csv(self.countries_urls)

    @property
    def countries_shapefile_url_list(self) -> list[str]:
        return _split_csv(self.countries_shapefile_urls)

    @property
    def regions_url_list(self) -> list[str]:
        return _split_csv(self.regions_urls)

    @property
    def timezones_url_list(self) -> list[str]:
        return _split_csv(self.timezones_urls)

    @property
    def city_country_list(self) -> list[str]:
        """Parse the city allow-list into upper-cased alpha-2 codes."""
        return [code.upper() for code in _split_csv(self.city_countries)]

    @property
    def city_feature_class_list(self) -> list[str]:
        return _split_csv(self.city_feature_classes)


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience function for quick access
settings = get_settings()


# =============================================================================
# Data Source Configuration
# =============================================================================

DATA_SOURCES = {
    "countries": {
        "name": "World country boundaries",
        "description": "Country polygons as GeoJSON, Natural Earth admin-0 as fallback",
        "license": "Public Domain / ODC-PDDL",
        "attribution": "Made with Natural Earth",
    },
    "regions": {
        "name": "Natural Earth admin-1",
        "description": "First-order administrative divisions (states, provinces)",
        "license": "Public Domain",
        "attribution": "Made with Natural Earth",
    },
    "cities": {
        "name": "Geofabrik OSM places",
        "description": "OpenStreetMap place areas (polygons) per country",
        "license": "ODbL 1.0",
        "attribution": "© OpenStreetMap contributors",
    },
    "timezones": {
        "name": "Timezone boundaries",
        "description": "IANA timezone polygons (not configured by default)",
        "license": "ODbL 1.0",
        "attribution": "© OpenStreetMap contributors",
    },
}
