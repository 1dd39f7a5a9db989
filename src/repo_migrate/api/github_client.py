"""GitHub REST and GraphQL client."""

from typing import Any, Callable, Dict, Iterator, Optional

import requests
from loguru import logger
from requests.utils import parse_header_links

from .client import DEFAULT_TIMEOUT, APIResponse, ApiClient
from .exceptions import GraphQLError, SecondaryRateLimitError
from .rate_limiter import RateLimitState
from .retry import RetryPolicy

GITHUB_API_URL = 'https://api.github.com'

PRIMARY_RATE_LIMIT_MARKER = 'API RATE LIMIT EXCEEDED'
SECONDARY_RATE_LIMIT_MARKERS = (
    'SECONDARY RATE LIMIT',
    'ABUSE DETECTION',
    'YOU HAVE TRIGGERED AN ABUSE DETECTION MECHANISM',
)
SECONDARY_RATE_LIMIT_MAX_RETRIES = 3
SECONDARY_RATE_LIMIT_DEFAULT_DELAY = 60


class GithubClient(ApiClient):
    """Bearer-token client for github.com and GitHub Enterprise Server."""

    def __init__(
        self,
        token: str,
        api_url: str = GITHUB_API_URL,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: int = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
    ):
        """Initialize GitHub client.

        Args:
            token: Personal access token
            api_url: REST API root, e.g. https://ghes.example.com/api/v3
            retry_policy: Policy used for GET requests
            timeout: Per-request timeout in seconds
            verify_ssl: Verify TLS certificates
        """
        super().__init__(api_url, retry_policy, timeout, verify_ssl)
        self._set_authorization(f'Bearer {token}', token)
        self.session.headers.update(
            {
                'Accept': 'application/vnd.github.v3+json',
                'GraphQL-Features': 'import_api,mannequin_claiming_emu,org_import_api',
            }
        )

        logger.debug(f'Initialized GitHub client for {api_url}')

    @property
    def graphql_url(self) -> str:
        return f'{self.base_url}/graphql'

    def _check_rate_limit(self, response: requests.Response) -> None:
        state = RateLimitState.from_headers(response.headers)
        body_says_exceeded = PRIMARY_RATE_LIMIT_MARKER in (response.text or '').upper()
        if state.exhausted or body_says_exceeded:
            delay = state.delay()
            if delay > 0:
                logger.warning(
                    f'GitHub rate limit exceeded. Waiting {delay} seconds before next request'
                )
                self.retry_delay.set(delay)

    @staticmethod
    def _is_secondary_rate_limit(response: requests.Response) -> bool:
        if response.status_code not in (403, 429):
            return False

        content = (response.text or '').upper()
        if PRIMARY_RATE_LIMIT_MARKER in content:
            return False

        return response.status_code == 429 or any(
            marker in content for marker in SECONDARY_RATE_LIMIT_MARKERS
        )

    @staticmethod
    def _secondary_rate_limit_delay(response: requests.Response, attempt: int) -> int:
        state = RateLimitState.from_headers(response.headers)
        if state.retry_after is not None:
            return state.retry_after
        if state.exhausted and state.delay() > 0:
            return state.delay()
        # 1m, 2m, 4m
        return SECONDARY_RATE_LIMIT_DEFAULT_DELAY * (2**attempt)

    def _send(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        expected_status: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        allow_redirects: bool = True,
    ) -> APIResponse:
        def send():
            return self._request(method, endpoint, body, params, headers, allow_redirects)

        response = send()
        secondary_attempts = 0
        forbidden_retried = False

        while True:
            if self._is_secondary_rate_limit(response):
                if secondary_attempts >= SECONDARY_RATE_LIMIT_MAX_RETRIES:
                    raise SecondaryRateLimitError(
                        'Secondary rate limit exceeded. Maximum retries '
                        f'({SECONDARY_RATE_LIMIT_MAX_RETRIES}) reached. '
                        'Please wait before retrying your request.',
                        status_code=response.status_code,
                        response_data=response.text,
                    )
                delay = self._secondary_rate_limit_delay(response, secondary_attempts)
                secondary_attempts += 1
                logger.warning(
                    f'Secondary rate limit detected (attempt {secondary_attempts}/'
                    f'{SECONDARY_RATE_LIMIT_MAX_RETRIES}). Waiting {delay} seconds '
                    'before retrying...'
                )
                self.retry_delay.set(delay)
                response = send()
                continue

            # A 403 while a reset delay is pending is the primary limit talking
            if (
                response.status_code == 403
                and self.retry_delay.pending > 0
                and not forbidden_retried
            ):
                forbidden_retried = True
                response = send()
                continue

            return self._handle_response(response, expected_status)

    @staticmethod
    def next_link(response: APIResponse) -> Optional[str]:
        """URL of the rel="next" page from a Link header, if any."""
        link_header = response.header('Link')
        if not link_header:
            return None
        for link in parse_header_links(link_header):
            if link.get('rel') == 'next':
                return link.get('url')
        return None

    def get_all(
        self,
        endpoint: str,
        selector: Optional[Callable[[Any], Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Iterator[Any]:
        """Lazily iterate over every item of a Link-paginated collection.

        Args:
            endpoint: First page URL
            selector: Extracts the item list from a page body
            headers: Extra request headers

        Yields:
            Items in page order
        """
        url = endpoint
        while url:
            response = self.get(url, headers=headers)
            items = selector(response.data) if selector else response.data
            for item in items or []:
                yield item
            url = self.next_link(response)

    def post_graphql(
        self, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """POST a GraphQL query.

        Raises:
            GraphQLError: When the response carries errors
        """
        response = self.post(self.graphql_url, body, headers=headers)
        data = response.data if isinstance(response.data, dict) else {}
        self._ensure_graphql_success(data)
        return data

    @staticmethod
    def _ensure_graphql_success(data: Dict[str, Any]) -> None:
        errors = data.get('errors')
        if errors:
            message = errors[0].get('message') if isinstance(errors[0], dict) else None
            raise GraphQLError(message or 'UNKNOWN', response_data=data)
