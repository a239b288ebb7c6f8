import os
import asyncio
import logging
from typing import Optional

import httpx

from .errors import FetchError, FetchTimeout

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def _flush_to_disk(f):
    f.flush()
    os.fsync(f.fileno())


class SourceFetcher:
    """Streams a remote video to local disk under a wall-clock budget."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Tests inject an httpx.MockTransport here
        self.transport = transport

    async def fetch(self, url: str, dest_path: str, timeout: float, authorization: Optional[str] = None) -> int:
        """Download ``url`` into ``dest_path`` and return the number of bytes written.

        ``authorization`` is forwarded verbatim as the Authorization header.
        Raises FetchTimeout when ``timeout`` seconds elapse before the body is
        fully on disk, FetchError for any transport or HTTP failure.
        """
        headers = {"Authorization": authorization} if authorization else {}
        logger.info(f"Downloading {url} -> {dest_path} (timeout {timeout}s)")

        try:
            written = await asyncio.wait_for(self._stream(url, headers, dest_path), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise FetchTimeout(f"Download timed out after {timeout:g}s: {url}") from e
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Download timed out: {str(e) or type(e).__name__}") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(f"Download failed with HTTP {e.response.status_code}: {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Download failed: {str(e) or type(e).__name__}") from e
        except OSError as e:
            raise FetchError(f"Failed to write downloaded file: {str(e)}") from e

        logger.info(f"Download complete: {written} bytes written to {dest_path}")
        return written

    async def _stream(self, url, headers, dest_path):
        written = 0
        async with httpx.AsyncClient(transport=self.transport, follow_redirects=True, timeout=None) as client:
            async with client.stream("GET", url, headers=headers) as response:
                response.raise_for_status()
                with open(dest_path, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        await asyncio.to_thread(f.write, chunk)
                        written += len(chunk)
                    await asyncio.to_thread(_flush_to_disk, f)
        return written
