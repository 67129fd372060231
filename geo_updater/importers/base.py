"""
Base importer for reference geometry tables.

Every importer replaces its table wholesale inside a single transaction:
the old rows are deleted, valid features are inserted, invalid features are
skipped and counted. Readers keep seeing the previous generation until commit.
"""

import json
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import text

from geo_updater.config import settings
from geo_updater.database import ENTITY_TABLES, SessionLocal
from geo_updater.errors import FeatureInvalidError
from geo_updater.utils.geo import ensure_multipolygon


def first_value(properties: dict, fields: tuple[str, ...]) -> str | None:
    """Return the first non-empty string among `fields`."""
    for name in fields:
        value = properties.get(name)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def first_code(properties: dict, fields: tuple[str, ...], length: int) -> str | None:
    """
    Return the first usable ISO code of `length` among `fields`, upper-cased.

    Natural Earth uses "-99" for missing codes.
    """
    for name in fields:
        value = properties.get(name)
        if not isinstance(value, str):
            continue
        value = value.strip()
        if value and value != "-99" and len(value) == length and value.isalpha():
            return value.upper()
    return None


def geometry_json(feature: dict) -> str:
    """Serialize the feature geometry as a MultiPolygon, or raise FeatureInvalidError."""
    geometry = ensure_multipolygon(feature.get("geometry"))
    if geometry is None:
        geom_type = (feature.get("geometry") or {}).get("type", "none")
        raise FeatureInvalidError(f"unsupported geometry ({geom_type})")
    return json.dumps(geometry, separators=(",", ":"))


@dataclass
class ImportResult:
    """Result of a table import."""
    entity: str
    success: bool = False
    features_seen: int = 0
    rows_written: int = 0
    skipped: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons[reason] += 1


class BaseImporter(ABC):
    """
    Abstract base class for entity importers.

    Subclasses must implement:
    - extract(): Map a GeoJSON feature to insert parameters
    - natural_keys(): Keys that must be unique within the table
    and set `entity`, `table` and `insert_sql`.
    """

    entity: str = None
    table: str = None
    insert_sql: str = None

    def __init__(self, session=None, batch_size: int | None = None):
        if self.table is None or self.insert_sql is None:
            raise ValueError("table and insert_sql must be set in subclass")

        self.session = session or SessionLocal()
        self._owns_session = session is None
        self.batch_size = batch_size or settings.pipeline.import_batch_size

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._owns_session:
            self.session.close()

    @abstractmethod
    def extract(self, feature: dict) -> dict[str, Any]:
        """
        Extract insert parameters from a feature.

        Raises:
            FeatureInvalidError: required identifying attributes are missing
        """
        pass

    @abstractmethod
    def natural_keys(self, record: dict[str, Any]) -> list[tuple]:
        """Unique keys of a record; a later record sharing any of them is a duplicate."""
        pass

    def prepare(self) -> None:
        """Hook run inside the transaction before rows are extracted."""
        pass

    def extract_all(self, features: list[dict], result: ImportResult) -> list[dict[str, Any]]:
        """Extract valid, de-duplicated records in input order."""
        records = []
        seen: set[tuple] = set()

        for index, feature in enumerate(features):
            result.features_seen += 1
            try:
                record = self.extract(feature)
            except FeatureInvalidError as e:
                result.skip(e.reason)
                logger.warning(f"Skipping {self.entity} feature #{index}: {e.reason}")
                continue

            keys = self.natural_keys(record)
            if any(key in seen for key in keys):
                result.skip("duplicate key")
                logger.debug(f"Skipping duplicate {self.entity} {keys}")
                continue

            seen.update(keys)
            records.append(record)

        return records

    def import_features(self, features: list[dict]) -> ImportResult:
        """
        Replace the table contents with `features`.

        Returns:
            ImportResult with row and skip counts

        Raises:
            Any database error; the transaction is rolled back first
        """
        result = ImportResult(entity=self.entity, started_at=datetime.now(timezone.utc))

        try:
            self.prepare()
            records = self.extract_all(features, result)

            self.session.execute(text(f"DELETE FROM {self.table}"))

            statement = text(self.insert_sql)
            for start in range(0, len(records), self.batch_size):
                batch = records[start:start + self.batch_size]
                self.session.execute(statement, batch)
                result.rows_written += len(batch)
                logger.debug(f"Inserted {result.rows_written:,}/{len(records):,} {self.entity}")

            self.session.commit()
            result.success = True

        except Exception as e:
            logger.error(f"Import of {self.entity} failed: {e}")
            self.session.rollback()
            raise

        finally:
            result.completed_at = datetime.now(timezone.utc)
            logger.info(
                f"Imported {self.entity}: {result.rows_written:,} rows, "
                f"{result.skipped:,} skipped, {result.duration_seconds:.1f}s"
            )
            if result.skip_reasons:
                reasons = ", ".join(f"{reason}: {count}" for reason, count in result.skip_reasons.most_common())
                logger.info(f"  Skip reasons for {self.entity}: {reasons}")

        return result


def clear_all_tables(session) -> None:
    """Truncate every entity table. Caller owns the transaction."""
    for table in ENTITY_TABLES:
        session.execute(text(f"TRUNCATE TABLE {table} RESTART IDENTITY CASCADE"))
    logger.info(f"Cleared tables: {', '.join(ENTITY_TABLES)}")
