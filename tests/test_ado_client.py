"""Tests for the Azure DevOps client and API wrappers."""

import base64
import re
from datetime import date

import pytest
from unittest.mock import patch

from repo_migrate.api.ado_api import AdoApi
from repo_migrate.api.ado_client import AdoClient
from repo_migrate.api.exceptions import ApiError


def count_responder(total, build_response):
    """Answer $top=1&$skip=N probes for a collection of `total` items."""

    def respond(method, url, **kwargs):
        skip = int(re.search(r'\$skip=(\d+)', url).group(1))
        return build_response(200, {'count': 1 if skip < total else 0, 'value': []})

    return respond


class TestAdoClient:
    """Test Azure DevOps client behaviour."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = AdoClient('ado-pat')

    def test_basic_authentication(self):
        """Test the PAT is sent as the basic auth password."""
        expected = base64.b64encode(b':ado-pat').decode()

        assert self.client.session.headers['Authorization'] == f'Basic {expected}'
        assert self.client.base_url == 'https://dev.azure.com'

    def test_get_with_paging_follows_continuation_token(self, make_response):
        """Test continuation tokens are appended to the original URL."""
        responses = [
            make_response(200, {'value': [1, 2]}, headers={'x-ms-continuationtoken': 'abc'}),
            make_response(200, {'value': [3]}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses) as mock_request:
            items = self.client.get_with_paging('/acme/_apis/projects?api-version=6.1-preview')

        assert items == [1, 2, 3]
        assert mock_request.call_args_list[1].args[1] == (
            'https://dev.azure.com/acme/_apis/projects'
            '?api-version=6.1-preview&continuationToken=abc'
        )

    def test_get_with_paging_retries_503(self, make_response, no_sleep):
        responses = [
            make_response(503, text='unavailable'),
            make_response(200, {'value': ['a']}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses):
            items = self.client.get_with_paging('/acme/_apis/projects')

        assert items == ['a']
        assert no_sleep == [1.0]

    def test_get_with_paging_does_not_retry_other_errors(self, make_response, no_sleep):
        with patch.object(
            self.client.session, 'request', return_value=make_response(502, text='bad gateway')
        ) as mock_request:
            with pytest.raises(ApiError):
                self.client.get_with_paging('/acme/_apis/projects')

        assert mock_request.call_count == 1

    def test_get_with_paging_top_skip(self, make_response):
        """Test $top/$skip paging stops at the first empty page."""
        responses = [
            make_response(200, {'value': [{'n': 1}, {'n': 2}]}),
            make_response(200, {'value': [{'n': 3}]}),
            make_response(200, {'value': []}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses) as mock_request:
            items = list(self.client.get_with_paging_top_skip('/pushes?x=1', lambda i: i['n']))

        assert items == [1, 2, 3]
        urls = [c.args[1] for c in mock_request.call_args_list]
        assert urls[0].endswith('/pushes?x=1&$skip=0&$top=1000')
        assert urls[1].endswith('/pushes?x=1&$skip=1000&$top=1000')

    @pytest.mark.parametrize('total', [0, 1, 3, 500, 700, 1000, 2345])
    def test_get_count_using_skip(self, total, make_response):
        """Test probing finds the exact item count."""
        responder = count_responder(total, make_response)
        with patch.object(self.client.session, 'request', side_effect=responder):
            assert self.client.get_count_using_skip('/pullrequests?api-version=7.1') == total

    def test_retry_after_delays_next_request(self, make_response, no_sleep):
        """Test a Retry-After header throttles the following request."""
        responses = [
            make_response(200, {'value': []}, headers={'Retry-After': '5'}),
            make_response(200, {'value': []}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses):
            self.client.get('/one')
            self.client.get('/two')

        assert no_sleep == [5]


class TestAdoApi:
    """Test Azure DevOps API wrappers."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = AdoClient('ado-pat')
        self.api = AdoApi(self.client)

    def test_get_team_projects(self, make_response):
        response = make_response(200, {'value': [{'name': 'Alpha'}, {'name': 'Beta'}]})
        with patch.object(self.client.session, 'request', return_value=response) as mock_request:
            projects = self.api.get_team_projects('my org')

        assert projects == ['Alpha', 'Beta']
        assert '/my%20org/_apis/projects' in mock_request.call_args.args[1]

    def test_get_enabled_repos(self, make_response):
        """Test disabled repositories are filtered out."""
        response = make_response(
            200,
            {
                'value': [
                    {'id': '1', 'name': 'api', 'size': '1024', 'isDisabled': False},
                    {'id': '2', 'name': 'old', 'size': 0, 'isDisabled': 'true'},
                ]
            },
        )
        with patch.object(self.client.session, 'request', return_value=response):
            repos = self.api.get_enabled_repos('acme', 'Alpha')

        assert [repo.name for repo in repos] == ['api']
        assert repos[0].size == 1024

    def test_get_pull_request_count(self, make_response):
        responder = count_responder(42, make_response)
        with patch.object(self.client.session, 'request', side_effect=responder):
            assert self.api.get_pull_request_count('acme', 'Alpha', 'api') == 42

    def test_get_commit_count_since(self, make_response):
        responder = count_responder(7, make_response)
        with patch.object(self.client.session, 'request', side_effect=responder) as mock_request:
            count = self.api.get_commit_count_since('acme', 'Alpha', 'api', date(2025, 3, 1))

        assert count == 7
        assert 'searchCriteria.fromDate=03/01/2025' in mock_request.call_args.args[1]

    def test_get_pushers_since(self, make_response):
        """Test pushers are formatted as display name and unique name."""
        pusher = {'pushedBy': {'displayName': 'Ann', 'uniqueName': 'ann@acme.com'}}
        responses = [
            make_response(200, {'value': [pusher, pusher]}),
            make_response(200, {'value': []}),
        ]
        with patch.object(self.client.session, 'request', side_effect=responses):
            pushers = self.api.get_pushers_since('acme', 'Alpha', 'api', date(2025, 3, 1))

        assert pushers == ['Ann (ann@acme.com)', 'Ann (ann@acme.com)']
