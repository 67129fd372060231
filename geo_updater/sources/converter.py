"""
Shapefile to GeoJSON conversion through GDAL's ogr2ogr.

The tool is treated as an opaque process: we build its arguments, run it,
and check the exit code and the output file. Attribute filtering is done
by ogr2ogr itself through a -where expression.
"""

import json
import shutil
import subprocess
import tempfile
import zipfile
from pathlib import Path

from loguru import logger

from geo_updater.config import settings
from geo_updater.errors import ConversionFailedError
from geo_updater.utils.cancellation import CancellationToken


# Geofabrik place areas first, then anything place-like, then any shapefile
OSM_PLACES_PATTERNS = ("gis_osm_places_a_*_1.shp", "*places_a*.shp", "*.shp")
ANY_SHAPEFILE_PATTERNS = ("*.shp",)

INSTALL_HINT = (
    "ogr2ogr not found. Install GDAL (e.g. 'apt-get install gdal-bin' or "
    "'brew install gdal') or set GEO_OGR2OGR_PATH."
)


def build_city_filter(feature_classes: list[str], min_population: int | None) -> str:
    """
    Build the ogr2ogr -where predicate keeping large settlements.

    >>> build_city_filter(["city", "town"], 10000)
    "fclass IN ('city', 'town') OR population >= 10000"
    """
    clauses = []
    if feature_classes:
        quoted = ", ".join("'" + c.replace("'", "''") + "'" for c in feature_classes)
        clauses.append(f"fclass IN ({quoted})")
    if min_population:
        clauses.append(f"population >= {int(min_population)}")
    return " OR ".join(clauses)


def find_shapefile(root: Path, patterns: tuple[str, ...]) -> Path | None:
    """Return the first shapefile under `root` matching the patterns in priority order."""
    for pattern in patterns:
        matches = sorted(root.rglob(pattern))
        if matches:
            return matches[0]
    return None


class FormatConverter:
    """
    Converts zipped shapefiles into GeoJSON feature collections.

    Each call works in its own temporary directory, so concurrent
    conversions from the regional fan-out never share files.
    """

    def __init__(
        self,
        ogr2ogr_path: str | None = None,
        timeout: int | None = None,
        work_dir: Path | None = None,
        cancel: CancellationToken | None = None,
    ):
        self.ogr2ogr_path = ogr2ogr_path or settings.pipeline.ogr2ogr_path
        self.timeout = timeout or settings.pipeline.ogr2ogr_timeout
        self.work_dir = Path(work_dir or settings.pipeline.work_dir)
        self.cancel = cancel or CancellationToken()

    def build_command(self, source: Path, output: Path, where: str | None = None) -> list[str]:
        cmd = [
            self.ogr2ogr_path,
            "-f", "GeoJSON",
            str(output),
            str(source),
            "-lco", "RFC7946=YES",
        ]
        if where:
            cmd.extend(["-where", where])
        return cmd

    def convert(
        self,
        archive: Path,
        where: str | None = None,
        patterns: tuple[str, ...] = ANY_SHAPEFILE_PATTERNS,
    ) -> dict:
        """
        Convert a zipped shapefile into a GeoJSON FeatureCollection.

        Args:
            archive: Path to the .zip archive
            where: Optional attribute filter evaluated by ogr2ogr
            patterns: Glob patterns used to pick the shapefile inside the archive

        Returns:
            Parsed FeatureCollection dict

        Raises:
            ConversionFailedError: extraction failed, no shapefile, tool missing,
                non-zero exit, timeout or empty output
        """
        self.cancel.raise_if_cancelled()
        self.work_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="convert_", dir=self.work_dir) as tmp:
            tmp_dir = Path(tmp)
            extract_dir = tmp_dir / "src"

            try:
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(extract_dir)
            except (zipfile.BadZipFile, OSError) as e:
                raise ConversionFailedError(f"Cannot extract {archive.name}: {e}") from e

            shapefile = find_shapefile(extract_dir, patterns)
            if shapefile is None:
                raise ConversionFailedError(f"No shapefile found in {archive.name} (patterns: {', '.join(patterns)})")

            output = tmp_dir / f"{shapefile.stem}.geojson"
            self.run_tool(shapefile, output, where)

            try:
                with open(output, encoding="utf-8") as f:
                    collection = json.load(f)
            except ValueError as e:
                raise ConversionFailedError(f"ogr2ogr wrote malformed GeoJSON for {shapefile.name}: {e}") from e

            if not isinstance(collection, dict):
                raise ConversionFailedError(f"ogr2ogr output for {shapefile.name} is not a GeoJSON object")

        logger.info(f"Converted {shapefile.name}: {len(collection.get('features', [])):,} features")
        return collection

    def run_tool(self, source: Path, output: Path, where: str | None = None) -> Path:
        """Run ogr2ogr and verify it produced a non-empty output file."""
        self.cancel.raise_if_cancelled()

        if shutil.which(self.ogr2ogr_path) is None:
            raise ConversionFailedError(INSTALL_HINT)

        cmd = self.build_command(source, output, where)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ConversionFailedError(INSTALL_HINT) from e
        except subprocess.TimeoutExpired as e:
            raise ConversionFailedError(f"ogr2ogr timed out after {self.timeout}s on {source.name}") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise ConversionFailedError(
                f"ogr2ogr exited with code {e.returncode} on {source.name}: {stderr[:500]}",
                returncode=e.returncode,
                stderr=stderr,
            ) from e

        if not output.exists() or output.stat().st_size == 0:
            raise ConversionFailedError(f"ogr2ogr produced no output for {source.name}")

        return output
