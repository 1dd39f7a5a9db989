"""Streaming HTTP download of migration archives."""

from pathlib import Path
from typing import Union

import aiohttp
from loguru import logger

from .. import __version__
from .client import DEFAULT_TIMEOUT
from .exceptions import ApiError

CHUNK_SIZE = 1024 * 1024


class HttpDownloadService:
    """Downloads archives from pre-signed URLs, without auth headers."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, verify_ssl: bool = True):
        """Initialize download service.

        Args:
            timeout: Total timeout for one download in seconds
            verify_ssl: Verify TLS certificates
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    async def download_to_file(self, url: str, path: Union[str, Path]) -> Path:
        """Stream the body of url into path.

        Args:
            url: Download URL
            path: Destination file, overwritten if present

        Returns:
            Path of the written file

        Raises:
            ApiError: On a non-success status (status_code set) or network failure
        """
        path = Path(path)
        logger.debug(f'HTTP GET: {url}')

        headers = {'User-Agent': f'repo-migrate/{__version__}'}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
            try:
                async with session.get(url, ssl=self.verify_ssl) as response:
                    logger.debug(f'RESPONSE ({response.status}): <truncated>')

                    if response.status >= 400:
                        raise ApiError(
                            f'Download failed with HTTP {response.status}',
                            status_code=response.status,
                        )

                    with open(path, 'wb') as f:
                        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                            f.write(chunk)

            except aiohttp.ClientError as e:
                logger.error(f'Network error during download: {e}')
                raise ApiError(f'Network error: {e}')

        return path
