"""Tests for the base API client and the GitHub client."""

import time

import pytest
import requests
from unittest.mock import patch

from repo_migrate.api.client import APIResponse, ApiClient
from repo_migrate.api.exceptions import (
    ApiError,
    AuthenticationError,
    GraphQLError,
    NotFoundError,
    RateLimitError,
    SecondaryRateLimitError,
)
from repo_migrate.api.github_client import GithubClient
from repo_migrate.api.retry import RetryPolicy


class TestAPIResponse:
    """Test APIResponse model."""

    def test_response_creation(self):
        """Test creating API response."""
        response = APIResponse(
            status_code=200,
            data={'id': 1, 'name': 'test'},
            headers={'Content-Type': 'application/json'},
            success=True,
        )

        assert response.status_code == 200
        assert response.data == {'id': 1, 'name': 'test'}
        assert response.success is True

    def test_header_lookup_is_case_insensitive(self):
        response = APIResponse(status_code=302, headers={'Location': 'https://x'}, success=False)

        assert response.header('location') == 'https://x'
        assert response.header('missing') is None


class TestApiClient:
    """Test base client behaviour."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = ApiClient(
            'https://api.example.com/', retry_policy=RetryPolicy(max_attempts=3)
        )

    def test_build_url(self):
        """Test relative endpoints resolve against the base URL."""
        assert self.client._build_url('/orgs/acme') == 'https://api.example.com/orgs/acme'
        assert self.client._build_url('orgs/acme') == 'https://api.example.com/orgs/acme'

    def test_build_url_absolute_passthrough(self):
        url = 'https://uploads.example.com/next?page=2'

        assert self.client._build_url(url) == url

    def test_get_success(self, make_response):
        """Test successful GET request."""
        with patch.object(
            self.client.session,
            'request',
            return_value=make_response(200, {'id': 1}),
        ) as mock_request:
            response = self.client.get('/users/1')

        assert response.success is True
        assert response.data == {'id': 1}
        args, kwargs = mock_request.call_args
        assert args == ('GET', 'https://api.example.com/users/1')
        assert kwargs['timeout'] == self.client.timeout

    def test_post_sends_json_body(self, make_response):
        with patch.object(
            self.client.session, 'request', return_value=make_response(201, {'ok': True})
        ) as mock_request:
            self.client.post('/things', {'name': 'x'})

        assert mock_request.call_args.kwargs['json'] == {'name': 'x'}

    def test_post_sends_bytes_as_data(self, make_response):
        with patch.object(
            self.client.session, 'request', return_value=make_response(200, {})
        ) as mock_request:
            self.client.post('/blob', b'raw')

        assert mock_request.call_args.kwargs['data'] == b'raw'

    def test_authentication_error_not_retried(self, make_response, no_sleep):
        """Test 401 raises immediately."""
        with patch.object(
            self.client.session,
            'request',
            return_value=make_response(401, {'message': 'Bad credentials'}),
        ) as mock_request:
            with pytest.raises(AuthenticationError) as exc_info:
                self.client.get('/user')

        assert 'Bad credentials' in str(exc_info.value)
        assert mock_request.call_count == 1
        assert no_sleep == []

    def test_not_found(self, make_response, no_sleep):
        with patch.object(
            self.client.session, 'request', return_value=make_response(404, {'message': 'Not Found'})
        ):
            with pytest.raises(NotFoundError) as exc_info:
                self.client.get('/missing')

        assert exc_info.value.status_code == 404

    def test_rate_limit_error_carries_retry_after(self, make_response, no_sleep):
        with patch.object(
            self.client.session,
            'request',
            return_value=make_response(429, headers={'Retry-After': '12'}),
        ):
            with pytest.raises(RateLimitError) as exc_info:
                self.client.post('/things', {})

        assert exc_info.value.retry_after == 12

    def test_server_error_retried(self, make_response, no_sleep):
        """Test GET retries 5xx and returns the eventual success."""
        responses = [make_response(500, text='boom'), make_response(200, {'id': 1})]
        with patch.object(self.client.session, 'request', side_effect=responses) as mock_request:
            response = self.client.get('/flaky')

        assert response.data == {'id': 1}
        assert mock_request.call_count == 2
        assert len(no_sleep) == 1

    def test_post_not_retried(self, make_response, no_sleep):
        """Test mutating requests fail on the first 5xx."""
        with patch.object(
            self.client.session, 'request', return_value=make_response(500, text='boom')
        ) as mock_request:
            with pytest.raises(ApiError):
                self.client.post('/things', {})

        assert mock_request.call_count == 1

    def test_network_error(self, no_sleep):
        """Test network failures become ApiError without a status code."""
        with patch.object(
            self.client.session,
            'request',
            side_effect=requests.ConnectionError('reset'),
        ) as mock_request:
            with pytest.raises(ApiError) as exc_info:
                self.client.get('/users')

        assert exc_info.value.status_code is None
        assert mock_request.call_count == 3

    def test_expected_status_mismatch(self, make_response):
        with patch.object(self.client.session, 'request', return_value=make_response(200, {})):
            with pytest.raises(ApiError) as exc_info:
                self.client.get_non_success('/archive', 302)

        assert 'Expected status code 302 but got 200' in str(exc_info.value)

    def test_context_manager(self):
        """Test client as context manager."""
        with patch.object(ApiClient, 'close') as mock_close:
            with ApiClient('https://api.example.com'):
                pass

            mock_close.assert_called_once()


class TestGithubClient:
    """Test GitHub specific behaviour."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = GithubClient('ghp_secret', 'https://api.github.com')

    def test_authorization_header(self):
        assert self.client.session.headers['Authorization'] == 'Bearer ghp_secret'
        assert self.client.graphql_url == 'https://api.github.com/graphql'

    def test_secondary_rate_limit_waits_retry_after(self, make_response, no_sleep):
        """Test a secondary limit with Retry-After waits that long and resends."""
        responses = [
            make_response(
                403,
                text='You have exceeded a secondary rate limit',
                headers={'Retry-After': '30'},
            ),
            make_response(200, {'id': 7}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses) as mock_request:
            response = self.client.post('/repos', {'name': 'x'})

        assert response.data == {'id': 7}
        assert mock_request.call_count == 2
        assert no_sleep == [30]

    def test_secondary_rate_limit_exponential_default(self, make_response, no_sleep):
        responses = [
            make_response(429, text='slow down'),
            make_response(429, text='slow down'),
            make_response(200, {}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses):
            self.client.post('/repos', {})

        assert no_sleep == [60, 120]

    def test_secondary_rate_limit_gives_up(self, make_response, no_sleep):
        """Test three retries then a SecondaryRateLimitError."""
        limited = make_response(403, text='abuse detection', headers={'Retry-After': '1'})
        with patch.object(
            self.client.session, 'request', return_value=limited
        ) as mock_request:
            with pytest.raises(SecondaryRateLimitError):
                self.client.get('/repos')

        assert mock_request.call_count == 4
        assert no_sleep == [1, 1, 1]

    def test_primary_rate_limit_delays_next_request(self, make_response, no_sleep):
        """Test an exhausted quota delays the following request until reset."""
        reset = int(time.time()) + 100
        responses = [
            make_response(
                200,
                {'page': 1},
                headers={'X-RateLimit-Remaining': '0', 'X-RateLimit-Reset': str(reset)},
            ),
            make_response(200, {'page': 2}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses):
            self.client.get('/one')
            assert no_sleep == []
            self.client.get('/two')

        assert len(no_sleep) == 1
        assert 95 <= no_sleep[0] <= 100

    def test_forbidden_with_pending_delay_resent_once(self, make_response, no_sleep):
        """Test a 403 from an exhausted quota is resent once after the reset delay."""
        reset = int(time.time()) + 30
        responses = [
            make_response(
                403,
                text='Forbidden',
                headers={'X-RateLimit-Remaining': '0', 'X-RateLimit-Reset': str(reset)},
            ),
            make_response(200, {'id': 1}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses) as mock_request:
            response = self.client.get('/orgs/acme')

        assert response.data == {'id': 1}
        assert mock_request.call_count == 2
        assert len(no_sleep) == 1
        assert no_sleep[0] >= 29

    def test_forbidden_after_resend_raises(self, make_response, no_sleep):
        """Test a second 403 is not resent again."""
        reset = int(time.time()) + 30
        forbidden = make_response(
            403,
            text='Forbidden',
            headers={'X-RateLimit-Remaining': '0', 'X-RateLimit-Reset': str(reset)},
        )
        with patch.object(
            self.client.session, 'request', side_effect=[forbidden, forbidden]
        ) as mock_request:
            with pytest.raises(ApiError) as exc_info:
                self.client.get('/orgs/acme')

        assert exc_info.value.status_code == 403
        assert mock_request.call_count == 2

    def test_primary_rate_limit_body_not_secondary(self, make_response, no_sleep):
        """Test a 403 naming the primary limit is not treated as secondary."""
        response = make_response(403, text='API rate limit exceeded for user')

        assert self.client._is_secondary_rate_limit(response) is False

    def test_get_all_follows_link_header(self, make_response, no_sleep):
        """Test Link pagination yields every item in order."""
        responses = [
            make_response(
                200,
                [1, 2],
                headers={'Link': '<https://api.github.com/items?page=2>; rel="next"'},
            ),
            make_response(
                200,
                [3, 4],
                headers={
                    'Link': '<https://api.github.com/items?page=3>; rel="next", '
                    '<https://api.github.com/items?page=1>; rel="first"'
                },
            ),
            make_response(200, [5]),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses) as mock_request:
            items = list(self.client.get_all('/items'))

        assert items == [1, 2, 3, 4, 5]
        assert mock_request.call_count == 3
        assert mock_request.call_args_list[1].args[1] == 'https://api.github.com/items?page=2'

    def test_get_all_is_lazy(self, make_response):
        with patch.object(self.client.session, 'request') as mock_request:
            self.client.get_all('/items')

        mock_request.assert_not_called()

    def test_post_graphql_errors(self, make_response):
        """Test a GraphQL errors array raises GraphQLError with the first message."""
        body = {'data': None, 'errors': [{'message': 'Could not resolve to a node'}]}
        with patch.object(self.client.session, 'request', return_value=make_response(200, body)):
            with pytest.raises(GraphQLError) as exc_info:
                self.client.post_graphql({'query': 'query {}'})

        assert 'Could not resolve to a node' in str(exc_info.value)

