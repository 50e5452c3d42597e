"""
Tests for SyncService.

End-to-end runs against the fake API: owner resolution, enumeration,
batched fetching, normalization, and a second run that only revalidates.
"""

import asyncio
from datetime import timedelta

import httpx
import pytest
from helpers import CAPTURED_AT, FakeApi, make_response, single

from inatsync.core.api.fetcher import ConditionalFetcher
from inatsync.core.api.models import CacheHeader
from inatsync.core.cache.store import CacheStore
from inatsync.core.config import SyncConfig
from inatsync.core.exceptions import MalformedEntityError, ProtocolError, StatusError
from inatsync.core.sync.models import FetchedEntity
from inatsync.core.sync.service import SyncService, batch_header, chunked

OWNER = {"id": 42, "login": "kueda", "name": "Ken-ichi"}


def conditional(fresh: httpx.Response):
    """Answer 304 to conditional requests and ``fresh`` otherwise."""

    def handler(request: httpx.Request) -> httpx.Response:
        if "If-Modified-Since" in request.headers:
            return make_response(304, content_type=None)
        return httpx.Response(fresh.status_code, headers=fresh.headers, content=fresh.content)

    return handler


def observation(entity_id: int) -> dict:
    return {
        "id": entity_id,
        "user": {"id": 42, "login": "kueda"},
        "taxon": {"id": 5, "name": "Quercus agrifolia"},
        "comments": [{"id": entity_id * 10, "body": "nice", "user": {"id": 8, "login": "y"}}],
    }


@pytest.fixture
def api(fake_api: FakeApi) -> FakeApi:
    """Fake API with one owner and three observations."""
    fake_api.add("/users/kueda", conditional(make_response(body=single(OWNER), etag='"u"')))
    listing = {
        "page": 1,
        "per_page": 200,
        "total_results": 3,
        "results": [{"id": 1}, {"id": 2}, {"id": 3}],
    }
    fake_api.add("/observations", conditional(make_response(body=listing)))
    for entity_id in (1, 2, 3):
        fake_api.add(
            f"/observations/{entity_id}",
            conditional(make_response(body=single(observation(entity_id)), etag=f'"o{entity_id}"')),
        )
    return fake_api


@pytest.fixture
def service(fetcher: ConditionalFetcher, store: CacheStore) -> SyncService:
    return SyncService(fetcher, store, per_page=200, batch_size=2, max_workers=1)


class TestHelpers:
    def test_chunked(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 3)) == []

    def test_chunked_rejects_zero(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))

    def test_batch_header_uses_earliest_time_without_etag(self):
        early = CacheHeader(captured_at=CAPTURED_AT, etag='"a"')
        late = CacheHeader(captured_at=CAPTURED_AT + timedelta(minutes=5), etag='"b"')
        fetched = {
            1: FetchedEntity(header=late, data={"id": 1}),
            2: FetchedEntity(header=early, data={"id": 2}),
        }

        assert batch_header(fetched) == CacheHeader(captured_at=CAPTURED_AT)

    def test_batch_header_of_empty_batch(self):
        with pytest.raises(ValueError):
            batch_header({})


class TestSyncUser:
    """Test owner resolution."""

    @pytest.mark.asyncio
    async def test_resolves_and_links_login(
        self, api: FakeApi, service: SyncService, store: CacheStore
    ):
        owner_id = await service.sync_user("kueda")

        assert owner_id == 42
        assert store.read_entity("users", 42).data == OWNER
        assert store.aliases("users") == {"kueda": 42}

    @pytest.mark.asyncio
    async def test_cached_user_is_revalidated(
        self, api: FakeApi, service: SyncService, store: CacheStore
    ):
        await service.sync_user("kueda")
        before = store.entity_path("users", 42).read_bytes()

        owner_id = await service.sync_user("kueda")

        assert owner_id == 42
        second = api.requests_to("/users/kueda")[1]
        assert second.headers["If-None-Match"] == '"u"'
        assert store.entity_path("users", 42).read_bytes() == before

    @pytest.mark.asyncio
    async def test_unknown_user(self, fake_api: FakeApi, service: SyncService):
        with pytest.raises(StatusError) as exc_info:
            await service.sync_user("nobody")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_user_without_login(self, fake_api: FakeApi, service: SyncService):
        fake_api.add("/users/kueda", make_response(body=single({"id": 42})))

        with pytest.raises(ProtocolError, match="login"):
            await service.sync_user("kueda")

    @pytest.mark.asyncio
    async def test_not_modified_without_cached_copy(
        self, fake_api: FakeApi, service: SyncService
    ):
        fake_api.add("/users/kueda", make_response(304, content_type=None))

        with pytest.raises(ProtocolError, match="not modified without a cached copy"):
            await service.sync_user("kueda")


class TestSyncOwner:
    """Test full runs."""

    @pytest.mark.asyncio
    async def test_first_run(self, api: FakeApi, service: SyncService, store: CacheStore):
        report = await service.sync_owner("kueda")

        assert report.owner_id == 42
        assert report.listed == 3
        assert report.fetched == 3
        assert report.unchanged == 0
        assert report.written["observations"] == 3
        assert report.written["comments"] == 3
        assert store.read_id_listing(42).ids == [1, 2, 3]

        entry = store.read_entity("observations", 2)
        assert entry.data["user"] == 42
        assert entry.data["taxon"] == 5
        assert entry.data["comments"] == [20]
        assert entry.header.etag == '"o2"'

        comment = store.read_entity("comments", 20)
        assert comment.data["user"] == 8
        assert comment.header.etag is None
        assert store.read_entity("taxa", 5).data == {"id": 5, "name": "Quercus agrifolia"}
        assert store.read_entity("users", 8).data == {"id": 8, "login": "y"}

    @pytest.mark.asyncio
    async def test_second_run_only_revalidates(
        self, api: FakeApi, service: SyncService, store: CacheStore
    ):
        await service.sync_owner("kueda")
        snapshot = {p: p.read_bytes() for p in store.data_dir.rglob("*.yaml") if p.is_file()}
        api.requests.clear()

        report = await service.sync_owner("kueda")

        assert report.fetched == 0
        assert report.unchanged == 3
        assert report.written == {}
        assert report.total_written == 0
        assert {p: p.read_bytes() for p in snapshot} == snapshot
        assert all("If-Modified-Since" in r.headers for r in api.requests)

    @pytest.mark.asyncio
    async def test_failed_batch_stops_the_run(
        self, api: FakeApi, service: SyncService, store: CacheStore
    ):
        """Test that the first batch is kept when the second batch fails."""
        api.routes["/observations/3"] = [make_response(500, {"error": "boom"})]

        with pytest.raises(StatusError):
            await service.sync_owner("kueda")

        assert store.read_entity("observations", 1).data["user"] == 42
        assert store.read_entity("observations", 2).data["user"] == 42
        assert not store.entity_path("observations", 3).exists()

    @pytest.mark.asyncio
    async def test_failed_batch_normalizes_completed_items(
        self, api: FakeApi, fetcher: ConditionalFetcher, store: CacheStore
    ):
        """Test that siblings of a failed item are normalized and stay current."""
        service = SyncService(fetcher, store, per_page=200, batch_size=3, max_workers=2)

        async def slow_failure(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.01)
            return make_response(500, {"error": "boom"})

        api.routes["/observations/3"] = [slow_failure]

        with pytest.raises(StatusError):
            await service.sync_owner("kueda")

        assert store.read_entity("observations", 1).data["user"] == 42
        assert store.read_entity("observations", 2).data["comments"] == [20]
        assert store.read_entity("comments", 10).data["user"] == 8
        assert not store.entity_path("observations", 3).exists()

        api.routes["/observations/3"] = [
            conditional(make_response(body=single(observation(3)), etag='"o3"'))
        ]
        report = await service.sync_owner("kueda")

        assert report.fetched == 1
        assert report.unchanged == 2
        assert store.read_entity("observations", 1).data["user"] == 42
        assert store.read_entity("observations", 3).data["user"] == 42
        assert store.read_entity("comments", 30).data["user"] == 8

    @pytest.mark.asyncio
    async def test_malformed_batch_is_fetched_again(
        self, api: FakeApi, service: SyncService, store: CacheStore
    ):
        """Test that a batch that cannot be normalized is not left cached."""
        malformed = {**observation(2), "taxon": "Quercus agrifolia"}
        api.routes["/observations/2"] = [
            conditional(make_response(body=single(malformed), etag='"o2"'))
        ]

        with pytest.raises(MalformedEntityError):
            await service.sync_owner("kueda")

        assert not store.entity_path("observations", 1).exists()
        assert not store.entity_path("observations", 2).exists()
        assert not store.entity_path("comments", 10).exists()

        api.routes["/observations/2"] = [
            conditional(make_response(body=single(observation(2)), etag='"o2"'))
        ]
        report = await service.sync_owner("kueda")

        assert report.fetched == 3
        assert store.read_entity("observations", 2).data["taxon"] == 5
        assert store.read_entity("observations", 1).header.etag == '"o1"'


class TestFromConfig:
    def test_builds_components(self, client: httpx.AsyncClient, tmp_path):
        config = SyncConfig(data_dir=tmp_path / "cache", per_page=50, batch_size=10, max_workers=3)

        service = SyncService.from_config(config, client)

        assert service.store.data_dir == tmp_path / "cache"
        assert service.cursor.per_page == 50
        assert service.batch_size == 10
        assert service.orchestrator.max_workers == 3
        assert service.fetcher.retry_after_default == 60.0
