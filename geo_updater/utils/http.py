"""
HTTP utilities for the data updater.

Plain single-attempt GETs. Fallback across mirrors is the fetcher's job, so
nothing here retries.
"""

from contextlib import contextmanager
from pathlib import Path

import httpx
from loguru import logger

from geo_updater.config import settings


# Default headers for requests
DEFAULT_HEADERS = {
    "User-Agent": "GeoResolver-DataUpdater/1.0",
    "Accept": "application/json, application/geo+json, application/zip, */*",
}


class HTTPError(Exception):
    """Custom HTTP error with status code."""

    def __init__(self, message: str, status_code: int = None, response: httpx.Response = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


@contextmanager
def http_client(client: httpx.Client | None = None, timeout: float | None = None):
    """Yield `client` as-is, or a fresh one that is closed afterwards."""
    if client is not None:
        yield client
        return

    timeout = timeout or settings.pipeline.http_timeout
    with httpx.Client(timeout=timeout, follow_redirects=True, headers=DEFAULT_HEADERS) as owned:
        yield owned


def fetch(
    url: str,
    timeout: float | None = None,
    client: httpx.Client | None = None,
) -> bytes:
    """
    GET a URL once and return the body.

    Args:
        url: URL to fetch
        timeout: Request timeout in seconds
        client: Optional shared httpx client

    Returns:
        Response body bytes

    Raises:
        HTTPError: For HTTP errors (4xx, 5xx)
        httpx.HTTPError: On transport failures (timeouts, connection errors)
    """
    logger.debug(f"Fetching GET {url}")

    with http_client(client, timeout) as c:
        response = c.get(url, timeout=timeout or settings.pipeline.http_timeout)

    if response.status_code >= 400:
        raise HTTPError(
            f"HTTP {response.status_code} for {url}",
            status_code=response.status_code,
            response=response,
        )

    logger.debug(f"Fetched {url} ({response.status_code}, {len(response.content):,} bytes)")
    return response.content


def _etag_path(dest_path: Path) -> Path:
    return dest_path.with_suffix(dest_path.suffix + ".etag")


def download_file(
    url: str,
    dest_path: Path,
    timeout: float | None = None,
    client: httpx.Client | None = None,
    use_etag: bool = True,
) -> Path:
    """
    Stream a URL to disk, reusing the cached copy when the server reports it unchanged.

    The download goes to a temp file first and only replaces `dest_path`
    once the body is complete.

    Args:
        url: URL to download
        dest_path: Destination file path
        timeout: Request timeout in seconds
        client: Optional shared httpx client
        use_etag: Send If-None-Match for a previously cached copy

    Returns:
        Path to the downloaded (or cached) file
    """
    dest_path = Path(dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    etag_file = _etag_path(dest_path)

    headers = {}
    if use_etag and dest_path.exists() and etag_file.exists():
        headers["If-None-Match"] = etag_file.read_text(encoding="utf-8").strip()

    temp_path = dest_path.with_suffix(dest_path.suffix + ".tmp")
    logger.info(f"Downloading {url}")

    try:
        with http_client(client, timeout) as c:
            with c.stream("GET", url, headers=headers, timeout=timeout or settings.pipeline.http_timeout) as response:
                if response.status_code == 304:
                    logger.info(f"Not modified, using cached {dest_path.name}")
                    return dest_path

                if response.status_code >= 400:
                    raise HTTPError(
                        f"HTTP {response.status_code} for {url}",
                        status_code=response.status_code,
                        response=response,
                    )

                size = 0
                with open(temp_path, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
                        size += len(chunk)

                etag = response.headers.get("ETag")

        temp_path.replace(dest_path)
        if etag:
            etag_file.write_text(etag, encoding="utf-8")
        elif etag_file.exists():
            etag_file.unlink()

        logger.info(f"Downloaded {size:,} bytes -> {dest_path.name}")
        return dest_path

    finally:
        if temp_path.exists():
            temp_path.unlink()
