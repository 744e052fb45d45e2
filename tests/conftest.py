"""Shared fixtures: fake clock, in-memory Redis and a scripted central system."""

import fakeredis
import httpx
import pytest

from edge_sync.config import Settings
from edge_sync.dto import SecureSyncPackage
from edge_sync.repositories import CentralClient, RedisLocalStore
from edge_sync.services import SecureEnvelope, SyncSecurityConfig

ESTABLISHMENT_ID = "est-1"
CENTRAL_URL = "http://central.test/api/v1"
JWT_SECRET = "test-jwt-secret"
SHARED_SECRET = "test-shared-secret"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CentralStub:
    """Scripted central system behind an httpx.MockTransport.

    Validates every package with a real SecureEnvelope, then acknowledges the
    ids chosen by ``acknowledge`` (all of them by default).
    """

    def __init__(self, receiver: SecureEnvelope) -> None:
        self.receiver = receiver
        self.online = True
        self.status_code = 200
        self.acknowledge = lambda ids: ids
        self.conflicts: list[dict] = []
        self.packages: list[SecureSyncPackage] = []
        self.headers: list[httpx.Headers] = []
        self.rejections: list[str] = []
        self.received_event_ids: list[str] = []
        self.health_checks = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("connection refused", request=request)

        if request.url.path.endswith("/health"):
            self.health_checks += 1
            return httpx.Response(200, json={"status": "ok"})

        if request.url.path.endswith("/sync/events"):
            package = SecureSyncPackage.model_validate_json(request.content)
            self.packages.append(package)
            self.headers.append(request.headers)
            if self.status_code != 200:
                return httpx.Response(self.status_code, json={"error": "unavailable"})

            result = self.receiver.validate_and_process_sync_package(
                package, request.headers["X-Establishment-Id"]
            )
            if not result.is_valid:
                self.rejections.append(result.error.value)
                return httpx.Response(
                    200,
                    json={"success": False, "syncedEvents": [], "message": result.error.value},
                )

            ids = [event["id"] for event in result.payload.events]
            self.received_event_ids.extend(ids)
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "syncedEvents": list(self.acknowledge(ids)),
                    "conflicts": self.conflicts,
                },
            )

        return httpx.Response(404)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def store(redis_client, clock):
    return RedisLocalStore(redis_client=redis_client, key_prefix="test", clock=clock)


@pytest.fixture
def security_config():
    return SyncSecurityConfig(
        jwt_secret=JWT_SECRET,
        local_system_secret=SHARED_SECRET,
        central_system_secret=SHARED_SECRET,
    )


@pytest.fixture
def envelope(security_config, clock):
    return SecureEnvelope(security_config, clock=clock)


@pytest.fixture
def central_stub(security_config, clock):
    return CentralStub(SecureEnvelope(security_config, clock=clock))


@pytest.fixture
async def central(central_stub):
    client = CentralClient(
        base_url=CENTRAL_URL,
        api_key="test-api-key",
        establishment_id=ESTABLISHMENT_ID,
        transport=httpx.MockTransport(central_stub.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def test_settings():
    return Settings(
        redis_url="redis://unused:6379",
        store_key_prefix="api-test",
        central_api_url=CENTRAL_URL,
        central_api_key="test-api-key",
        establishment_id=ESTABLISHMENT_ID,
        sync_interval=3600,
        sync_retry_delay=0,
        connection_check_interval=3600,
        cache_max_size=100,
        sync_jwt_secret=JWT_SECRET,
        local_system_secret=SHARED_SECRET,
        central_system_secret=SHARED_SECRET,
    )
