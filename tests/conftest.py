"""
Pytest configuration and shared fixtures.

Isolates configuration from the developer machine and provides the fake API,
recording sleep, temporary cache store and header factory used across the
test suite.
"""

import os
from collections.abc import Callable
from datetime import timedelta

import httpx
import pytest
from helpers import BASE_URL, CAPTURED_AT, FakeApi, FakeSleep

from inatsync.core.api.fetcher import ConditionalFetcher
from inatsync.core.api.models import CacheHeader
from inatsync.core.cache.store import CacheStore
from inatsync.core.config import clear_cache

INATSYNC_VARS = (
    "INATSYNC_API_URL",
    "INATSYNC_DATA_DIR",
    "INATSYNC_PER_PAGE",
    "INATSYNC_BATCH_SIZE",
    "INATSYNC_MAX_WORKERS",
    "INATSYNC_USER",
)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user config, .env files and INATSYNC_* variables out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    for name in INATSYNC_VARS:
        monkeypatch.delenv(name, raising=False)
    clear_cache()
    yield
    clear_cache()
    # .env loading writes os.environ directly
    for name in INATSYNC_VARS:
        os.environ.pop(name, None)


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def client(fake_api: FakeApi) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(fake_api))


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fetcher(client: httpx.AsyncClient, fake_sleep: FakeSleep) -> ConditionalFetcher:
    return ConditionalFetcher(client, sleep=fake_sleep)


@pytest.fixture
def store(tmp_path) -> CacheStore:
    """Cache store rooted in a temporary directory."""
    store = CacheStore(tmp_path / "data")
    store.ensure_layout()
    return store


@pytest.fixture
def make_header() -> Callable[..., CacheHeader]:
    """Factory for cache headers relative to CAPTURED_AT."""

    def _make(seconds: int = 0, etag: str | None = None) -> CacheHeader:
        return CacheHeader(captured_at=CAPTURED_AT + timedelta(seconds=seconds), etag=etag)

    return _make
