"""
Post-processing of freshly imported reference data.

Two independent passes:
- region backfill: link cities to the region containing their centroid
- transliteration: rewrite non-Latin display names in Latin script

Neither pass can fail the pipeline. Cancellation is the only thing that
escapes, and only between transliteration batches.
"""

from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger
from sqlalchemy import text
from unidecode import unidecode

from geo_updater.config import settings
from geo_updater.database import SessionLocal, get_session
from geo_updater.errors import PipelineCancelledError, PostProcessingBatchError
from geo_updater.utils.cancellation import CancellationToken
from geo_updater.utils.text import NON_LATIN_NAME_PATTERN, clean_latin


# Lowest region id wins when overlapping regions contain the same centroid
BACKFILL_REGIONS_SQL = """
    UPDATE cities c
    SET region_identifier = sub.identifier
    FROM (
        SELECT DISTINCT ON (c.id) c.id, r.identifier
        FROM cities c
        JOIN regions r ON (
            (c.country_iso_alpha2_code IS NOT NULL AND r.country_iso_alpha2_code = c.country_iso_alpha2_code)
            OR (c.country_iso_alpha3_code IS NOT NULL AND r.country_iso_alpha3_code = c.country_iso_alpha3_code)
        )
        WHERE c.region_identifier IS NULL
          AND ST_Contains(r.geometry, ST_Centroid(c.geometry))
        ORDER BY c.id, r.id
    ) sub
    WHERE c.id = sub.id
"""

TRANSLITERATION_TABLES = ("regions", "cities")


class Transliterator(Protocol):
    def transliterate(self, value: str) -> str:
        ...


class UnidecodeTransliterator:
    """Any script to ASCII via unidecode."""

    def transliterate(self, value: str) -> str:
        return unidecode(value)


@dataclass
class TransliterationResult:
    """Counters for one table's transliteration pass."""
    table: str
    selected: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    batches_committed: int = 0
    batches_failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class PostProcessResult:
    cities_backfilled: int = 0
    backfill_error: str | None = None
    transliteration: dict[str, TransliterationResult] = field(default_factory=dict)

    @property
    def had_errors(self) -> bool:
        return self.backfill_error is not None or any(
            r.batches_failed or r.failed for r in self.transliteration.values()
        )


class SpatialPostProcessor:
    """
    Runs the post-import repair passes.

    Args:
        session_factory: Callable returning a new SQLAlchemy session
        transliterator: Anything with transliterate(str) -> str
        batch_size: Rows per transliteration transaction
        max_rows: Cap on rows selected per table and invocation
        cancel: Cancellation token checked between batches
    """

    def __init__(
        self,
        session_factory=None,
        transliterator: Transliterator | None = None,
        batch_size: int | None = None,
        max_rows: int | None = None,
        cancel: CancellationToken | None = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.transliterator = transliterator or UnidecodeTransliterator()
        self.batch_size = batch_size or settings.pipeline.transliteration_batch_size
        self.max_rows = max_rows or settings.pipeline.transliteration_max_rows
        self.cancel = cancel or CancellationToken()

    # -------------------------------------------------------------------------
    # Region backfill
    # -------------------------------------------------------------------------

    def backfill_regions(self) -> int:
        """
        Assign region_identifier to cities that have none, in one statement.

        Returns:
            Number of cities updated

        Raises:
            PostProcessingBatchError: the update failed and was rolled back
        """
        logger.info("Backfilling city regions by centroid containment...")
        try:
            with get_session(self.session_factory) as session:
                updated = session.execute(text(BACKFILL_REGIONS_SQL)).rowcount
        except Exception as e:
            raise PostProcessingBatchError(f"Region backfill failed: {e}") from e

        logger.info(f"Backfilled region for {updated:,} cities")
        return updated

    # -------------------------------------------------------------------------
    # Transliteration
    # -------------------------------------------------------------------------

    def select_non_latin(self, table: str) -> list[tuple[int, str]]:
        if table not in TRANSLITERATION_TABLES:
            raise ValueError(f"Unsupported table for transliteration: {table}")

        with get_session(self.session_factory) as session:
            rows = session.execute(
                text(f"""
                    SELECT id, name_latin FROM {table}
                    WHERE name_latin IS NOT NULL AND name_latin ~ :pattern
                    ORDER BY id
                    LIMIT :limit
                """),
                {"pattern": NON_LATIN_NAME_PATTERN, "limit": self.max_rows},
            ).all()
        return [(row[0], row[1]) for row in rows]

    def transliterate_batch(self, rows: list[tuple[int, str]], result: TransliterationResult) -> list[dict]:
        """Compute replacements for one batch; empty results keep the original name."""
        updates = []
        for row_id, name in rows:
            latin = clean_latin(self.transliterator.transliterate(name) or "")
            if not latin:
                result.failed += 1
                logger.warning(f"Transliteration returned nothing for {result.table} #{row_id} ({name!r}), keeping original")
                continue
            if latin == name:
                result.unchanged += 1
                continue
            updates.append({"id": row_id, "name": latin[:255]})
        return updates

    def transliterate_names(self, table: str) -> TransliterationResult:
        """
        Transliterate up to max_rows non-Latin names in `table`.

        Each batch is its own transaction. A failed batch is rolled back and
        counted; batches committed before it stay committed.

        Raises:
            PipelineCancelledError: cancelled between batches
        """
        result = TransliterationResult(table=table)
        rows = self.select_non_latin(table)
        result.selected = len(rows)
        logger.info(f"Transliterating {len(rows):,} {table} names (batch size {self.batch_size})")

        statement = text(f"UPDATE {table} SET name_latin = :name WHERE id = :id")

        for start in range(0, len(rows), self.batch_size):
            self.cancel.raise_if_cancelled()
            batch = rows[start:start + self.batch_size]
            batch_no = start // self.batch_size + 1

            try:
                with get_session(self.session_factory) as session:
                    updates = self.transliterate_batch(batch, result)
                    if updates:
                        session.execute(statement, updates)
            except Exception as e:
                message = f"{table} batch {batch_no} rolled back: {e}"
                result.batches_failed += 1
                result.errors.append(message)
                logger.error(message)
                continue

            result.batches_committed += 1
            result.updated += len(updates)

        logger.info(
            f"Transliterated {table}: {result.updated:,} updated, {result.unchanged:,} unchanged, "
            f"{result.failed:,} failed, {result.batches_failed} batches rolled back"
        )
        return result

    def run(self) -> PostProcessResult:
        """Run both passes; failures are recorded, not raised."""
        result = PostProcessResult()

        self.cancel.raise_if_cancelled()
        try:
            result.cities_backfilled = self.backfill_regions()
        except PostProcessingBatchError as e:
            result.backfill_error = str(e)
            logger.warning(f"{e}; cities keep a NULL region")

        for table in TRANSLITERATION_TABLES:
            self.cancel.raise_if_cancelled()
            try:
                result.transliteration[table] = self.transliterate_names(table)
            except PipelineCancelledError:
                raise
            except Exception as e:
                # Selection itself failed; nothing was written for this table
                logger.warning(f"Transliteration of {table} failed: {e}")
                result.transliteration[table] = TransliterationResult(table=table, batches_failed=1, errors=[str(e)])

        return result
