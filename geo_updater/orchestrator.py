"""
Full data update run.

Sequence: lock -> clear -> countries -> regions -> cities -> timezones ->
post-processing -> last_update -> unlock.

A failure in clear, an import, or the last_update write aborts the run and
leaves last_update untouched, so the next scheduled check retries.
Post-processing problems are logged and never abort.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from loguru import logger
from sqlalchemy import text

from geo_updater.config import settings
from geo_updater.database import SessionLocal, get_session, set_last_update
from geo_updater.errors import LockUnavailableError, PipelineCancelledError
from geo_updater.importers import (
    CityImporter,
    CountryImporter,
    ImportResult,
    RegionImporter,
    TimezoneImporter,
    clear_all_tables,
)
from geo_updater.lock import ExclusivityCoordinator
from geo_updater.postprocess import PostProcessResult, SpatialPostProcessor
from geo_updater.sources.datasets import DatasetLoader
from geo_updater.sources.geofabrik import is_valid_alpha2
from geo_updater.utils.cancellation import CancellationToken


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"         # another process holds the lock
    CANCELLED = "cancelled"


@dataclass
class StageResult:
    """Timing and outcome of one stage."""
    name: str
    duration_seconds: float = 0.0
    rows: int | None = None
    skipped: int | None = None
    error: str | None = None
    detail: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunResult:
    """Result of a whole pipeline run."""
    status: RunStatus = RunStatus.FAILED
    stages: list[StageResult] = field(default_factory=list)
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def stage(self, name: str) -> StageResult | None:
        return next((s for s in self.stages if s.name == name), None)


class UpdatePipeline:
    """
    Orchestrates one full data update.

    All collaborators are injectable so each stage can be exercised without
    a live database or network.
    """

    def __init__(
        self,
        loader: DatasetLoader | None = None,
        lock: ExclusivityCoordinator | None = None,
        postprocessor: SpatialPostProcessor | None = None,
        session_factory=None,
        cancel: CancellationToken | None = None,
        city_countries: list[str] | None = None,
    ):
        self.cancel = cancel or CancellationToken()
        self.session_factory = session_factory or SessionLocal
        self.loader = loader or DatasetLoader(cancel=self.cancel)
        self.lock = lock or ExclusivityCoordinator(cancel=self.cancel)
        self.postprocessor = postprocessor or SpatialPostProcessor(
            session_factory=self.session_factory, cancel=self.cancel
        )
        self.city_countries = city_countries if city_countries is not None else settings.pipeline.city_country_list

    # -------------------------------------------------------------------------
    # Stage helpers
    # -------------------------------------------------------------------------

    def _time_stage(self, result: RunResult, name: str, func: Callable[[], Any]) -> StageResult:
        """Run `func` as stage `name`, record timing, re-raise failures."""
        self.cancel.raise_if_cancelled()
        stage = StageResult(name=name)
        result.stages.append(stage)
        logger.info(f"Stage '{name}' starting")
        started = time.monotonic()

        try:
            outcome = func()
        except Exception as e:
            stage.error = str(e)
            raise
        finally:
            stage.duration_seconds = time.monotonic() - started

        if isinstance(outcome, ImportResult):
            stage.rows = outcome.rows_written
            stage.skipped = outcome.skipped
        elif isinstance(outcome, int):
            stage.rows = outcome
        stage.detail = outcome

        logger.info(f"Stage '{name}' finished in {stage.duration_seconds:.1f}s")
        return stage

    def _import(self, importer_cls, features: list[dict]) -> ImportResult:
        session = self.session_factory()
        try:
            with importer_cls(session=session) as importer:
                return importer.import_features(features)
        finally:
            session.close()

    def resolve_city_countries(self) -> list[str]:
        """Configured allow-list, or every alpha-2 code that made it into countries."""
        if self.city_countries:
            return list(self.city_countries)

        session = self.session_factory()
        try:
            rows = session.execute(text(
                "SELECT iso_alpha2_code FROM countries WHERE iso_alpha2_code IS NOT NULL ORDER BY iso_alpha2_code"
            )).scalars().all()
        finally:
            session.close()
        return [code for code in rows if is_valid_alpha2(code)]

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def stage_clear(self) -> None:
        with get_session(self.session_factory) as session:
            clear_all_tables(session)

    def stage_countries(self) -> ImportResult:
        return self._import(CountryImporter, self.loader.load_countries())

    def stage_regions(self) -> ImportResult:
        return self._import(RegionImporter, self.loader.load_regions())

    def stage_cities(self) -> ImportResult:
        codes = self.resolve_city_countries()
        logger.info(f"Loading cities for {len(codes)} countries")
        return self._import(CityImporter, self.loader.load_cities(codes))

    def stage_timezones(self) -> ImportResult | None:
        features = self.loader.load_timezones()
        if features is None:
            logger.info("No timezone source configured; lookups fall back to longitude-based offsets")
            return None
        return self._import(TimezoneImporter, features)

    def stage_postprocess(self) -> PostProcessResult:
        return self.postprocessor.run()

    def stage_last_update(self) -> datetime:
        with get_session(self.session_factory) as session:
            return set_last_update(session)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, postprocess_only: bool = False) -> RunResult:
        """
        Execute the full update under the advisory lock.

        Args:
            postprocess_only: Skip clear/imports and only repair existing data

        Returns:
            RunResult; never raises for lock contention, failure or cancellation
        """
        result = RunResult(started_at=datetime.now(timezone.utc))

        try:
            self.cancel.raise_if_cancelled()
            with self.lock:
                if postprocess_only:
                    self._time_stage(result, "postprocess", self.stage_postprocess)
                else:
                    self._time_stage(result, "clear", self.stage_clear)
                    self._time_stage(result, "countries", self.stage_countries)
                    self._time_stage(result, "regions", self.stage_regions)
                    self._time_stage(result, "cities", self.stage_cities)
                    self._time_stage(result, "timezones", self.stage_timezones)
                    self._time_stage(result, "postprocess", self.stage_postprocess)
                    self._time_stage(result, "last_update", self.stage_last_update)
            result.status = RunStatus.SUCCEEDED

        except LockUnavailableError as e:
            result.status = RunStatus.SKIPPED
            result.error = str(e)
            logger.warning(f"Update skipped: {e}")

        except PipelineCancelledError as e:
            result.status = RunStatus.CANCELLED
            result.error = str(e)
            logger.warning("Update cancelled; last_update not written")

        except Exception as e:
            result.status = RunStatus.FAILED
            result.error = str(e)
            logger.exception(f"Update failed: {e}")

        finally:
            result.completed_at = datetime.now(timezone.utc)
            for stage in result.stages:
                marker = "ok" if stage.ok else "FAILED"
                logger.info(f"  {stage.name:<12} {stage.duration_seconds:8.1f}s  {marker}")
            logger.info(f"Update {result.status.value} in {result.duration_seconds:.1f}s")

        return result
