"""Remote source download over HTTP(S)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx

from abr.domain.errors import InputError

CHUNK_SIZE = 1024 * 1024


def is_url(value: str) -> bool:
    return str(value).startswith(("http://", "https://"))


class Downloader:
    """Streams a remote file to disk with httpx."""

    def __init__(
        self,
        timeout_seconds: float = 60.0,
        client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._client = client
        self.logger = logger or logging.getLogger(__name__)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, follow_redirects=True)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def download(self, url: str, destination: Path) -> Path:
        """Downloads ``url`` to ``destination``.

        Raises:
            InputError: the request failed or returned a non-2xx status.

        A partially written file is removed on any failure, Ctrl+C included.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"DOWNLOAD_START: {url} -> {destination}")
        written = 0
        try:
            with self._get_client().stream("GET", url) as response:
                response.raise_for_status()
                with open(destination, "wb") as f:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        written += len(chunk)
        except httpx.HTTPStatusError as e:
            destination.unlink(missing_ok=True)
            raise InputError(f"Failed to download {url}: HTTP {e.response.status_code}", phase="download")
        except (httpx.HTTPError, OSError) as e:
            destination.unlink(missing_ok=True)
            raise InputError(f"Failed to download {url}: {e}", phase="download")
        except KeyboardInterrupt:
            self.logger.info(f"DOWNLOAD_INTERRUPTED: {destination.name} after {written} bytes")
            destination.unlink(missing_ok=True)
            raise

        self.logger.info(f"DOWNLOAD_END: {destination.name} bytes={written}")
        return destination
