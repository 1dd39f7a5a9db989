"""Bitbucket Server REST client."""

import base64
from typing import Any, Iterator, Optional

from loguru import logger

from .client import DEFAULT_TIMEOUT, ApiClient
from .retry import RetryPolicy

DEFAULT_PAGE_SIZE = 100


class BbsClient(ApiClient):
    """Basic-auth (username/password) client for Bitbucket Server."""

    def __init__(
        self,
        server_url: str,
        username: str,
        password: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: int = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
    ):
        """Initialize Bitbucket Server client.

        Args:
            server_url: Bitbucket Server root URL
            username: Account name
            password: Account password or HTTP access token
            retry_policy: Policy used for GET requests
            timeout: Per-request timeout in seconds
            verify_ssl: Verify TLS certificates
        """
        super().__init__(server_url, retry_policy, timeout, verify_ssl)
        credentials = base64.b64encode(f'{username}:{password}'.encode()).decode()
        self._set_authorization(f'Basic {credentials}', password, credentials)

        logger.debug(f'Initialized Bitbucket Server client for {server_url}')

    def get_all(self, endpoint: str, page_size: int = DEFAULT_PAGE_SIZE) -> Iterator[Any]:
        """Lazily iterate a start/limit paginated collection.

        Args:
            endpoint: Collection URL
            page_size: Items requested per page

        Yields:
            Items of the values arrays, in page order
        """
        start = 0
        while True:
            response = self.get(endpoint, params={'start': start, 'limit': page_size})
            page = response.data or {}
            for item in page.get('values') or []:
                yield item

            if page.get('isLastPage', True):
                return
            start = page.get('nextPageStart') or 0
