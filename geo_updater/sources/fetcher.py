"""
Ordered-fallback dataset fetcher.

Tries each candidate URL exactly once, in order, and returns the first payload
that passes validation. This is a mirror chain, not a retry loop.
"""

import json
import time
from collections.abc import Callable
from pathlib import Path

import httpx
from loguru import logger

from geo_updater.config import settings
from geo_updater.errors import SourceExhaustedError
from geo_updater.utils.cancellation import CancellationToken
from geo_updater.utils.http import HTTPError, download_file, fetch


Validator = Callable[[bytes], str | None]


def geojson_validator(payload: bytes) -> str | None:
    """Accept only a GeoJSON FeatureCollection. Returns an error message or None."""
    try:
        document = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        return f"not valid JSON: {e}"

    if not isinstance(document, dict) or document.get("type") != "FeatureCollection":
        return "top-level type is not FeatureCollection"
    if not isinstance(document.get("features"), list):
        return "missing features array"
    return None


def zip_validator(payload: bytes) -> str | None:
    """Accept only payloads starting with the zip local-file magic."""
    if not payload.startswith(b"PK"):
        return "not a zip archive"
    return None


class SourceFetcher:
    """
    Fetch a dataset from an ordered list of mirrors.

    Args:
        timeout: Per-attempt timeout in seconds
        client: Optional shared httpx client (tests inject a MockTransport here)
        cancel: Cancellation token checked before every attempt
    """

    def __init__(
        self,
        timeout: float | None = None,
        client: httpx.Client | None = None,
        cancel: CancellationToken | None = None,
    ):
        self.timeout = timeout or settings.pipeline.http_timeout
        self.client = client
        self.cancel = cancel or CancellationToken()

    def fetch(self, urls: list[str], validate: Validator | None = None) -> bytes:
        """
        Return the first valid payload among `urls`.

        Raises:
            SourceExhaustedError: every URL failed; `last_error` holds the final cause
            PipelineCancelledError: cancelled between attempts
        """
        return self._try_each(
            urls,
            lambda url: fetch(url, timeout=self.timeout, client=self.client),
            validate,
        )

    def fetch_to_file(self, urls: list[str], dest_path: Path, validate: Validator | None = None) -> Path:
        """
        Same fallback policy as fetch(), streaming the winning URL to `dest_path`.

        `validate` receives the first 4 KB of the downloaded file.
        """

        def attempt(url: str) -> Path:
            path = download_file(url, dest_path, timeout=self.timeout, client=self.client)
            if validate:
                with open(path, "rb") as f:
                    error = validate(f.read(4096))
                if error:
                    path.unlink()
                    raise ValueError(error)
            return path

        return self._try_each(urls, attempt, None)

    def _try_each(self, urls, attempt, validate):
        if not urls:
            raise SourceExhaustedError("No source URLs configured")

        attempts = []
        last_error: Exception | None = None

        for index, url in enumerate(urls, start=1):
            self.cancel.raise_if_cancelled()
            attempts.append(url)
            started = time.monotonic()

            try:
                result = attempt(url)
                if validate:
                    error = validate(result)
                    if error:
                        raise ValueError(f"invalid payload: {error}")
            except (httpx.HTTPError, httpx.InvalidURL, HTTPError, OSError, ValueError) as e:
                last_error = e
                elapsed = time.monotonic() - started
                logger.warning(f"Source {index}/{len(urls)} failed after {elapsed:.1f}s: {url} ({e})")
                continue

            elapsed = time.monotonic() - started
            logger.info(f"Fetched source {index}/{len(urls)} in {elapsed:.1f}s: {url}")
            return result

        raise SourceExhaustedError(
            f"All {len(urls)} source URLs failed; last error: {last_error}",
            attempts=attempts,
            last_error=last_error,
        ) from last_error
