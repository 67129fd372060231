"""
Concurrent download and conversion of regional source archives.

Every part is fetched and converted on a worker thread. The join waits for
all of them, and the merge is all-or-nothing: one failed part fails the
whole dataset so partial national coverage is never imported.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from geo_updater.config import settings
from geo_updater.errors import PipelineCancelledError, RegionalPartFailedError
from geo_updater.sources.converter import OSM_PLACES_PATTERNS, FormatConverter
from geo_updater.sources.fetcher import SourceFetcher, zip_validator
from geo_updater.sources.geofabrik import RegionalPart
from geo_updater.utils.cancellation import CancellationToken


DEFAULT_COUNTRY_PROPERTY = "default_country"


@dataclass
class PartResult:
    """Outcome of one fan-out branch: features on success, the cause on failure."""
    part: RegionalPart
    features: list[dict] = field(default_factory=list)
    error: Exception | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class RegionalFanout:
    """
    Fetch+convert a set of regional parts in parallel and merge the results.

    Args:
        fetcher: SourceFetcher used for each part's archive
        converter: FormatConverter applied to each archive
        where: Attribute filter passed to the converter
        cache_dir: Where archives are cached between runs (ETag-revalidated)
        max_workers: Upper bound on concurrent branches
        cancel: Cancellation token shared with the run
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        converter: FormatConverter,
        where: str | None = None,
        cache_dir: Path | None = None,
        max_workers: int | None = None,
        cancel: CancellationToken | None = None,
    ):
        self.fetcher = fetcher
        self.converter = converter
        self.where = where
        self.cache_dir = Path(cache_dir or settings.pipeline.cache_dir / "geofabrik")
        self.max_workers = max_workers or settings.pipeline.fanout_max_workers
        self.cancel = cancel or CancellationToken()

    def archive_path(self, part: RegionalPart) -> Path:
        return self.cache_dir / f"{part.path.replace('/', '_')}-latest-free.shp.zip"

    def process_part(self, part: RegionalPart) -> list[dict]:
        """Download and convert one part, tagging features with the part's country."""
        self.cancel.raise_if_cancelled()
        archive = self.fetcher.fetch_to_file([part.url()], self.archive_path(part), validate=zip_validator)
        collection = self.converter.convert(archive, where=self.where, patterns=OSM_PLACES_PATTERNS)

        features = collection.get("features") or []
        for feature in features:
            if not isinstance(feature.get("properties"), dict):
                feature["properties"] = {}
            feature["properties"][DEFAULT_COUNTRY_PROPERTY] = part.country_code
        return features

    def _run_branch(self, part: RegionalPart) -> PartResult:
        started = time.monotonic()
        try:
            features = self.process_part(part)
        except Exception as e:
            return PartResult(part=part, error=e, duration_seconds=time.monotonic() - started)
        return PartResult(part=part, features=features, duration_seconds=time.monotonic() - started)

    def collect(self, parts: list[RegionalPart]) -> list[PartResult]:
        """Run every branch and return one PartResult per part, in input order."""
        if not parts:
            return []

        workers = max(1, min(self.max_workers, len(parts)))
        logger.info(f"Fanning out {len(parts)} regional parts ({workers} workers)")
        results: dict[int, PartResult] = {}

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanout") as executor:
            future_to_index = {
                executor.submit(self._run_branch, part): index
                for index, part in enumerate(parts)
            }

            for future in as_completed(future_to_index):
                index = future_to_index[future]
                result = future.result()
                results[index] = result

                if result.ok:
                    logger.info(
                        f"  {result.part.path}: {len(result.features):,} features "
                        f"({result.duration_seconds:.1f}s)"
                    )
                else:
                    logger.error(f"  {result.part.path} failed: {result.error}")

        return [results[i] for i in range(len(parts))]

    def run(self, parts: list[RegionalPart]) -> list[dict]:
        """
        Fan out over `parts` and merge their features.

        Raises:
            RegionalPartFailedError: at least one part failed; no features are returned
            PipelineCancelledError: the run was cancelled while branches were running
        """
        results = self.collect(parts)
        self.cancel.raise_if_cancelled()

        failures = {r.part.path: r.error for r in results if not r.ok}
        if failures:
            if all(isinstance(e, PipelineCancelledError) for e in failures.values()):
                raise PipelineCancelledError("Regional fan-out cancelled")
            raise RegionalPartFailedError(
                f"{len(failures)} of {len(results)} regional parts failed: {', '.join(sorted(failures))}",
                failures=failures,
            )

        merged = [feature for r in results for feature in r.features]
        logger.info(f"Merged {len(merged):,} features from {len(results)} regional parts")
        return merged
