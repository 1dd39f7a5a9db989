"""Azure DevOps REST client."""

import base64
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests
from loguru import logger

from .client import DEFAULT_TIMEOUT, ApiClient
from .rate_limiter import RateLimitState
from .retry import RetryPolicy

ADO_SERVER_URL = 'https://dev.azure.com'
CONTINUATION_TOKEN_HEADER = 'x-ms-continuationtoken'
TOP_SKIP_PAGE_SIZE = 1000


def _with_query(url: str, query: str) -> str:
    return f'{url}{"&" if "?" in url else "?"}{query}'


class AdoClient(ApiClient):
    """Basic-auth (PAT) client for Azure DevOps Services and Server."""

    def __init__(
        self,
        token: str,
        server_url: str = ADO_SERVER_URL,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: int = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
    ):
        """Initialize Azure DevOps client.

        Args:
            token: Personal access token
            server_url: Collection root, https://dev.azure.com by default
            retry_policy: Policy used for GET requests
            timeout: Per-request timeout in seconds
            verify_ssl: Verify TLS certificates
        """
        super().__init__(server_url, retry_policy, timeout, verify_ssl)
        credentials = base64.b64encode(f':{token}'.encode('ascii')).decode('ascii')
        self._set_authorization(f'Basic {credentials}', token, credentials)

        logger.debug(f'Initialized Azure DevOps client for {server_url}')

    def _check_rate_limit(self, response: requests.Response) -> None:
        retry_after = RateLimitState.from_headers(response.headers).retry_after
        if retry_after:
            logger.warning(f'THROTTLING IN EFFECT. Waiting {retry_after} seconds')
            self.retry_delay.set(retry_after)

    def get_with_paging(self, url: str) -> List[Any]:
        """Collect the value arrays of a continuation-token paginated resource.

        Args:
            url: First page URL

        Returns:
            Items of every page, in page order
        """
        items = []
        page_url = url
        while True:
            response = self.retry_policy.http_retry(
                lambda: self._send('GET', page_url),
                is_retryable=lambda e: e.status_code == 503,
            )
            items.extend((response.data or {}).get('value') or [])

            token = response.header(CONTINUATION_TOKEN_HEADER)
            if not token:
                return items
            page_url = _with_query(url, f'continuationToken={token}')

    def get_with_paging_top_skip(
        self, url: str, selector: Optional[Callable[[Any], Any]] = None
    ) -> Iterator[Any]:
        """Lazily iterate a $top/$skip paginated resource until an empty page."""
        skip = 0
        while True:
            response = self.get(
                _with_query(url, f'$skip={skip}&$top={TOP_SKIP_PAGE_SIZE}')
            )
            page = (response.data or {}).get('value') or []
            if not page:
                return
            for item in page:
                yield selector(item) if selector else item
            skip += TOP_SKIP_PAGE_SIZE

    def get_count_using_skip(self, url: str) -> int:
        """Count the items of a resource that reports no total.

        Probes single-item pages: double an upper bound until a probe comes
        back empty, then binary search between the last hit and the miss.
        """
        if not self._skip_exists(url, 0):
            return 0

        min_count = 1
        max_count = 500
        while self._skip_exists(url, max_count):
            max_count *= 2

        skip = 500
        while min_count < max_count:
            if self._skip_exists(url, skip):
                min_count = skip + 1
            else:
                max_count = skip
            skip = (max_count - min_count) // 2 + min_count

        return min_count

    def _skip_exists(self, url: str, skip: int) -> bool:
        response = self.get(_with_query(url, f'$top=1&$skip={skip}'))
        data: Dict[str, Any] = response.data or {}
        return int(data.get('count') or 0) > 0
