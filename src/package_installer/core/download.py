"""
Archive download over HTTP.

Remote package archives are streamed into a temporary file before they are
opened. Transient failures (timeouts, refused connections, 429/5xx) are
retried with exponential backoff, and the whole transfer is bounded by a
caller-supplied deadline. A cancelled or failed download never leaves a
partial file behind.
"""

import asyncio
import logging
import os
import random
import tempfile
from pathlib import Path

import aiofiles
import httpx

from package_installer.core.errors import ArchiveDownloadError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class ExponentialBackoff:
    """Implements exponential backoff with jitter for retry logic."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 30.0, max_retries: int = 3):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt``, ±25% jitter."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0, delay + jitter)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


async def _stream_to_file(client: httpx.AsyncClient, url: str, destination: Path) -> int:
    size = 0
    async with client.stream("GET", url) as resp:
        resp.raise_for_status()
        async with aiofiles.open(destination, "wb") as f:
            async for chunk in resp.aiter_bytes():
                await f.write(chunk)
                size += len(chunk)
    return size


async def _download_with_retries(
    client: httpx.AsyncClient, url: str, destination: Path, backoff: ExponentialBackoff
) -> None:
    attempt = 0
    while True:
        try:
            size = await _stream_to_file(client, url, destination)
            logger.info(f"Downloaded {url} ({size / 1024:.1f} KiB)")
            return
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status not in RETRYABLE_STATUS or not backoff.should_retry(attempt):
                raise ArchiveDownloadError(url, f"HTTP {status}") from e
            reason = f"HTTP {status}"
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            if not backoff.should_retry(attempt):
                raise ArchiveDownloadError(url, type(e).__name__) from e
            reason = type(e).__name__

        delay = backoff.calculate_delay(attempt)
        logger.warning(f"Download of {url} failed ({reason}), retry {attempt + 1} after {delay:.1f}s")
        await asyncio.sleep(delay)
        attempt += 1


async def download_archive(
    url: str,
    work_dir: Path,
    timeout: float | None = None,
    backoff: ExponentialBackoff | None = None,
    client: httpx.AsyncClient | None = None,
) -> Path:
    """
    Download a remote archive into ``work_dir``.

    Args:
        url: http(s) URL of the archive.
        work_dir: Directory for the temporary file.
        timeout: Overall deadline in seconds (None = no deadline).
        backoff: Retry policy.
        client: Optional preconfigured client (tests inject a mock transport).

    Returns:
        Path of the downloaded file.

    Raises:
        ArchiveDownloadError: On failure or when the deadline passes.
    """
    work_dir.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix="package_", suffix=".download", dir=work_dir)
    os.close(fd)
    destination = Path(tmp_name)
    backoff = backoff or ExponentialBackoff()

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=60.0), follow_redirects=True
        )

    try:
        await asyncio.wait_for(_download_with_retries(client, url, destination, backoff), timeout)
    except asyncio.TimeoutError:
        destination.unlink(missing_ok=True)
        raise ArchiveDownloadError(url, f"deadline of {timeout}s exceeded") from None
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    finally:
        if own_client:
            await client.aclose()

    return destination
