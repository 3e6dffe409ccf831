"""Shared test fixtures."""

import json
from collections.abc import Callable

import httpx
import pytest

from revu.hooks import Hooks
from revu.providers.base import ProviderConfig


def api_url(base: str, path: str, **params) -> str:
    """Absolute URL with an encoded query string, the way httpx sends it."""
    return str(httpx.URL(f"{base}{path}", params=params or None))


def sent_json(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture
def hooks() -> Hooks:
    return Hooks()


@pytest.fixture
def make_config() -> Callable[..., ProviderConfig]:
    def _make(provider_type: str, **overrides) -> ProviderConfig:
        values = {"type": provider_type, "token": "tok_test", "owner": "acme", "repo": "widgets"}
        values.update(overrides)
        return ProviderConfig(**values)

    return _make
