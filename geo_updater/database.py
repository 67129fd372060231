"""
Database models for the geo resolver reference store.

Uses SQLAlchemy 2.0 with GeoAlchemy2 for PostGIS support. The tables here are
the contract with the read path: countries, regions, cities, timezones and the
single-row last_update marker.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    create_engine,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    sessionmaker,
)
from geoalchemy2 import Geometry
from loguru import logger

from geo_updater.config import settings


# =============================================================================
# Database Engine and Session
# =============================================================================

engine = create_engine(
    settings.database.url,
    echo=settings.pipeline.log_level == "DEBUG",
    pool_pre_ping=True,
    pool_size=settings.database.pool_size,
    max_overflow=settings.database.max_overflow,
    pool_timeout=30,        # Connection timeout to prevent hanging
    pool_recycle=1800,      # Recycle connections every 30 minutes
    connect_args={
        "connect_timeout": 10,
        # Bulk geometry loads run far longer than API queries
        "options": f"-c statement_timeout={settings.database.statement_timeout_ms}",
    },
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_session(session_factory=None):
    """Context manager for database sessions."""
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Base Model
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _multipolygon():
    return Geometry(geometry_type="MULTIPOLYGON", srid=4326, spatial_index=True)


# =============================================================================
# Reference Geometry Models
# =============================================================================

class Country(Base):
    """A country polygon identified by ISO 3166-1 alpha-2 and/or alpha-3 code."""
    __tablename__ = "countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    iso_alpha2_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True, unique=True)
    iso_alpha3_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True, unique=True)
    name_latin: Mapped[str] = mapped_column(String(255), nullable=False)
    geometry: Mapped[str] = mapped_column(_multipolygon(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "iso_alpha2_code IS NOT NULL OR iso_alpha3_code IS NOT NULL",
            name="ck_countries_has_code",
        ),
    )

    def __repr__(self) -> str:
        return f"<Country {self.iso_alpha2_code or self.iso_alpha3_code} {self.name_latin}>"


class Region(Base):
    """
    First-order administrative division.

    The identifier is only unique within the owning country, so uniqueness is
    enforced per (identifier, country code).
    """
    __tablename__ = "regions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    name_latin: Mapped[str] = mapped_column(String(255), nullable=False)
    country_iso_alpha2_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    country_iso_alpha3_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    geometry: Mapped[str] = mapped_column(_multipolygon(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "country_iso_alpha2_code IS NOT NULL OR country_iso_alpha3_code IS NOT NULL",
            name="ck_regions_has_code",
        ),
        UniqueConstraint("identifier", "country_iso_alpha2_code", name="uq_regions_identifier_a2"),
        UniqueConstraint("identifier", "country_iso_alpha3_code", name="uq_regions_identifier_a3"),
        Index("idx_regions_country_a2", "country_iso_alpha2_code"),
        Index("idx_regions_country_a3", "country_iso_alpha3_code"),
    )

    def __repr__(self) -> str:
        return f"<Region {self.identifier} ({self.country_iso_alpha2_code or self.country_iso_alpha3_code})>"


class City(Base):
    """
    City area polygon.

    region_identifier is left NULL by import and filled by post-processing.
    """
    __tablename__ = "cities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    name_latin: Mapped[str] = mapped_column(String(255), nullable=False)
    country_iso_alpha2_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    country_iso_alpha3_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    region_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    geometry: Mapped[str] = mapped_column(_multipolygon(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "country_iso_alpha2_code IS NOT NULL OR country_iso_alpha3_code IS NOT NULL",
            name="ck_cities_has_code",
        ),
        UniqueConstraint(
            "identifier", "country_iso_alpha2_code", "country_iso_alpha3_code",
            name="uq_cities_identifier_country",
        ),
        Index("idx_cities_region", "region_identifier"),
    )

    def __repr__(self) -> str:
        return f"<City {self.identifier} {self.name_latin}>"


class Timezone(Base):
    """IANA timezone area."""
    __tablename__ = "timezones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timezone_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    geometry: Mapped[str] = mapped_column(_multipolygon(), nullable=False)

    def __repr__(self) -> str:
        return f"<Timezone {self.timezone_id}>"


class LastUpdate(Base):
    """Single-row marker written only after a complete, successful run."""
    __tablename__ = "last_update"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_last_update_single_row"),
    )

    def __repr__(self) -> str:
        return f"<LastUpdate {self.updated_at}>"


ENTITY_TABLES = ("countries", "regions", "cities", "timezones")


# =============================================================================
# Helper Functions
# =============================================================================

def verify_postgis(session) -> str | None:
    """Return the PostGIS version, or None if the extension is missing."""
    try:
        return session.execute(text("SELECT PostGIS_version();")).scalar()
    except Exception as e:
        logger.error(f"PostGIS not available: {e}")
        session.rollback()
        return None


def create_all_tables():
    """Create the PostGIS extension and all tables in the database."""
    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
    Base.metadata.create_all(bind=engine)


def get_last_update(session) -> datetime | None:
    """Timestamp of the last completed run, if any."""
    return session.execute(
        text("SELECT updated_at FROM last_update WHERE id = 1")
    ).scalar()


def set_last_update(session, when: datetime | None = None) -> datetime:
    """Upsert the single last_update row. Caller owns the transaction."""
    when = when or datetime.now(timezone.utc)
    session.execute(
        text("""
            INSERT INTO last_update (id, updated_at)
            VALUES (1, :updated_at)
            ON CONFLICT (id) DO UPDATE SET updated_at = EXCLUDED.updated_at
        """),
        {"updated_at": when},
    )
    return when


def get_table_counts(session) -> dict[str, int]:
    """Row count per entity table."""
    return {
        table: session.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar() or 0
        for table in ENTITY_TABLES
    }
