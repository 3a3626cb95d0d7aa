# redirect_service/tests/conftest.py
import asyncio
import json

import httpx
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from cache import LinkCache
from resolver import Resolver
from store import DirectusStore

TEST_DIRECTUS_URL = "http://directus.test"
TEST_TOKEN = "test-static-token"
TEST_COLLECTION = "short_links"


class FakeDirectus:
    """In-memory stand-in for the Directus items API, served via httpx.MockTransport."""

    def __init__(self, token: str = TEST_TOKEN, collection: str = TEST_COLLECTION):
        self.token = token
        self.collection = collection
        self.records = {}
        self.requests = []
        self.unreachable = False
        self.delay = 0.0
        self.patch_delay = 0.0
        self.fail_status = None
        self.fail_patch_status = None
        self.case_insensitive = False
        # Number of upcoming PATCHes preceded by another client's increment.
        self.concurrent_writes = 0
        self._next_id = 1

    def add(self, slug: str, target_url: str, clicks=0, **extra) -> dict:
        record_id = self._next_id
        self._next_id += 1
        record = {
            "id": record_id,
            "slug": slug,
            "target_url": target_url,
            "clicks": clicks,
            "date_created": f"2024-05-01T10:00:{record_id:02d}.000Z",
            "date_updated": None,
            "sort": None,
            "user_updated": None,
        }
        record.update(extra)
        self.records[record_id] = record
        return record

    def clicks(self, record_id):
        return self.records[record_id]["clicks"]

    def requests_with(self, method: str):
        return [r for r in self.requests if r.method == method]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # Yield so concurrent callers interleave like real network I/O.
        await asyncio.sleep(self.delay)
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if request.headers.get("authorization") != f"Bearer {self.token}":
            return self._error(401, "Invalid user credentials.")
        if self.fail_status:
            return self._error(self.fail_status, "Service unavailable.")

        path = request.url.path
        items = f"/items/{self.collection}"
        if path == "/server/ping":
            return httpx.Response(200, text="pong")
        if path == items and request.method == "GET":
            flt = json.loads(request.url.params.get("filter", "{}"))
            data = [dict(r) for r in self._ordered() if self._matches(r, flt)]
            return httpx.Response(200, json={"data": data})
        if path == items and request.method == "PATCH":
            if self.patch_delay:
                await asyncio.sleep(self.patch_delay)
            if self.fail_patch_status:
                return self._error(self.fail_patch_status, "Write failed.")
            body = json.loads(request.content)
            flt = body["query"]["filter"]
            if self.concurrent_writes:
                self.concurrent_writes -= 1
                for record in self._ordered():
                    if self._matches(record, {"id": flt["id"]}):
                        record["clicks"] = (record["clicks"] or 0) + 1
            updated = []
            for record in self._ordered():
                if self._matches(record, flt):
                    record.update(body["data"])
                    updated.append(dict(record))
            return httpx.Response(200, json={"data": updated})
        if path.startswith(items + "/") and request.method == "GET":
            raw_id = path[len(items) + 1 :]
            record = self.records.get(int(raw_id)) if raw_id.isdigit() else None
            if record is None:
                return self._error(403, "You don't have permission to access this.")
            return httpx.Response(200, json={"data": dict(record)})
        return self._error(404, "Route doesn't exist.")

    def _ordered(self):
        return sorted(self.records.values(), key=lambda r: (r["date_created"], r["id"]))

    def _matches(self, record: dict, flt: dict) -> bool:
        for field, condition in flt.items():
            value = record.get(field)
            if "_eq" in condition:
                expected = condition["_eq"]
                if self.case_insensitive and isinstance(value, str):
                    if value.lower() != str(expected).lower():
                        return False
                elif value != expected:
                    return False
            if condition.get("_null") and value is not None:
                return False
        return True

    @staticmethod
    def _error(status_code: int, message: str) -> httpx.Response:
        return httpx.Response(status_code, json={"errors": [{"message": message}]})


class FakeRedis:
    """Just enough of redis.asyncio.Redis for LinkCache."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.broken = False

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        self.expiry[key] = ex

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        pass

    def _check(self):
        if self.broken:
            raise RedisConnectionError("Error 111 connecting to redis:6379.")


@pytest.fixture
def fake_directus():
    return FakeDirectus()


@pytest_asyncio.fixture
async def store_client(fake_directus):
    client = httpx.AsyncClient(
        base_url=TEST_DIRECTUS_URL,
        headers={"Authorization": f"Bearer {TEST_TOKEN}"},
        transport=fake_directus.transport(),
    )
    yield client
    await client.aclose()


@pytest.fixture
def store(store_client):
    return DirectusStore(store_client, TEST_COLLECTION, max_retries=10)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def link_cache(fake_redis):
    return LinkCache(fake_redis, ttl=3600, miss_ttl=60)


@pytest.fixture
def resolver(store):
    return Resolver(store=store, timeout=1.0)
