"""Shared test fixtures."""

import json

import pytest
from unittest.mock import Mock
from requests.structures import CaseInsensitiveDict

from repo_migrate.utils.logging import clear_secrets


def build_response(status_code=200, data=None, headers=None, text=None):
    """Build a mock requests.Response."""
    if text is None:
        text = json.dumps(data) if data is not None else ''

    response = Mock()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict(headers or {})
    response.text = text
    response.content = text.encode()
    if data is not None:
        response.json.return_value = data
    else:
        response.json.side_effect = ValueError('No JSON')
    return response


@pytest.fixture
def make_response():
    """Factory for mock HTTP responses."""
    return build_response


@pytest.fixture
def no_sleep(monkeypatch):
    """Record sleeps instead of waiting."""
    sleeps = []
    monkeypatch.setattr('time.sleep', lambda seconds: sleeps.append(seconds))
    return sleeps


@pytest.fixture(autouse=True)
def reset_secrets():
    yield
    clear_secrets()
