"""Base HTTP client shared by the platform clients."""

import json
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests
from loguru import logger
from pydantic import BaseModel

from .. import __version__
from ..utils.logging import register_secret
from .exceptions import (
    ApiError,
    AuthenticationError,
    NotFoundError,
    RateLimitError,
)
from .rate_limiter import RateLimitState, RetryDelay
from .retry import RetryPolicy, is_transient_error

DEFAULT_TIMEOUT = 3600


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any = None
    headers: Dict[str, str] = {}
    success: bool
    text: str = ''

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return None


class ApiClient:
    """HTTP client with auth, verbose tracing and rate-limit delay handling.

    Subclasses set the authentication header and decide which response
    signals mean the quota is exhausted.
    """

    def __init__(
        self,
        base_url: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: int = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
    ):
        """Initialize API client.

        Args:
            base_url: Base URL that relative endpoints are resolved against
            retry_policy: Policy used for idempotent GET requests
            timeout: Per-request timeout in seconds
            verify_ssl: Verify TLS certificates
        """
        self.base_url = base_url.rstrip('/')
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.retry_delay = RetryDelay()
        self.session = requests.Session()

        self.session.headers.update(
            {
                'Accept': 'application/json',
                'User-Agent': f'repo-migrate/{__version__}',
            }
        )

    def _set_authorization(self, value: str, *secrets: str) -> None:
        self.session.headers['Authorization'] = value
        register_secret(value)
        for secret in secrets:
            register_secret(secret)

    def _build_url(self, endpoint: str) -> str:
        """Build full API URL from endpoint.

        Absolute URLs (pagination links, upload locations) pass through.
        """
        if endpoint.startswith(('http://', 'https://')):
            return endpoint
        return urljoin(self.base_url + '/', endpoint.lstrip('/'))

    def _request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        allow_redirects: bool = True,
    ) -> requests.Response:
        """Send one request after honouring any pending rate-limit delay."""
        url = self._build_url(endpoint)

        waited = self.retry_delay.apply()
        if waited:
            logger.debug(f'Waited {waited:g}s for rate limit reset before {method} {url}')

        logger.debug(f'HTTP {method}: {url}')

        kwargs = {}
        if body is not None:
            if isinstance(body, (bytes, bytearray)) or hasattr(body, 'read'):
                logger.debug('HTTP BODY: BLOB')
                kwargs['data'] = body
            else:
                logger.debug(f'HTTP BODY: {json.dumps(body)}')
                kwargs['json'] = body

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=allow_redirects,
                verify=self.verify_ssl,
                **kwargs,
            )
        except requests.RequestException as e:
            logger.error(f'Network error during {method} request: {e}')
            raise ApiError(f'Network error: {e}')

        logger.debug(f'RESPONSE ({response.status_code}): {response.text}')

        self._check_rate_limit(response)
        return response

    def _check_rate_limit(self, response: requests.Response) -> None:
        """Store the delay the next request must wait, if the quota ran out."""
        state = RateLimitState.from_headers(response.headers)
        if state.exhausted:
            delay = state.delay()
            if delay > 0:
                logger.warning(
                    f'Rate limit exceeded. Waiting {delay} seconds before next request'
                )
                self.retry_delay.set(delay)

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
        response = self._request(
            method, endpoint, body, params, headers, allow_redirects
        )
        return self._handle_response(response, expected_status)

    def _handle_response(
        self, response: requests.Response, expected_status: Optional[int] = None
    ) -> APIResponse:
        """Handle API response and convert to standard format.

        Args:
            response: Raw HTTP response
            expected_status: Exact status required, any 2xx when None

        Returns:
            Standardized API response

        Raises:
            ApiError: For unexpected statuses
        """
        status = response.status_code
        headers = dict(response.headers)
        text = response.text or ''

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = text

        ok = status == expected_status if expected_status else 200 <= status < 300
        if ok:
            return APIResponse(
                status_code=status,
                data=data,
                headers=headers,
                success=200 <= status < 300,
                text=text,
            )

        if isinstance(data, dict) and data.get('message'):
            message = data['message']
        else:
            message = text or f'HTTP {status}'

        if expected_status and 200 <= status < 300:
            message = f'Expected status code {expected_status} but got {status}'

        if status == 401:
            raise AuthenticationError(
                f'Authentication failed: {message}',
                status_code=status,
                response_data=data,
            )

        if status == 404:
            raise NotFoundError(
                f'Resource not found: {message}', status_code=status, response_data=data
            )

        if status == 429:
            retry_after = RateLimitState.from_headers(headers).retry_after or 60
            raise RateLimitError(
                f'Rate limit exceeded. Retry after {retry_after} seconds',
                retry_after=retry_after,
                status_code=status,
                response_data=data,
            )

        raise ApiError(
            f'API request failed: {message}', status_code=status, response_data=data
        )

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """Make GET request, retrying transient failures.

        Args:
            endpoint: API endpoint or absolute URL
            params: Query parameters
            headers: Extra request headers

        Returns:
            API response
        """
        return self.retry_policy.retry(
            lambda: self._send('GET', endpoint, params=params, headers=headers),
            exceptions=(ApiError,),
            when=is_transient_error,
        )

    def get_non_success(self, endpoint: str, expected_status: int) -> APIResponse:
        """GET without following redirects, requiring an exact status.

        Args:
            endpoint: API endpoint or absolute URL
            expected_status: Status the caller expects, e.g. 302

        Returns:
            API response carrying the raw headers
        """
        return self._send(
            'GET', endpoint, expected_status=expected_status, allow_redirects=False
        )

    def post(
        self,
        endpoint: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        expected_status: Optional[int] = None,
    ) -> APIResponse:
        """Make POST request.

        Args:
            endpoint: API endpoint or absolute URL
            data: JSON-serializable body, or bytes/file object sent as-is
            headers: Extra request headers
            expected_status: Exact status required, any 2xx when None

        Returns:
            API response
        """
        return self._send(
            'POST', endpoint, data, headers=headers, expected_status=expected_status
        )

    def put(
        self,
        endpoint: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """Make PUT request."""
        return self._send('PUT', endpoint, data, headers=headers)

    def patch(
        self,
        endpoint: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """Make PATCH request."""
        return self._send('PATCH', endpoint, data, headers=headers)

    def delete(
        self, endpoint: str, headers: Optional[Dict[str, str]] = None
    ) -> APIResponse:
        """Make DELETE request."""
        return self._send('DELETE', endpoint, headers=headers)

    def close(self):
        """Close the client session."""
        self.session.close()
        logger.debug(f'Client session for {self.base_url} closed')

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
