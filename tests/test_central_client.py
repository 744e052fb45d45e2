"""Tests for the central system HTTP client."""

import httpx
import pytest

from edge_sync.dto import SecureSyncPackage
from edge_sync.errors import CentralUnavailableError
from edge_sync.repositories import CentralClient

from conftest import CENTRAL_URL, ESTABLISHMENT_ID

PACKAGE = SecureSyncPackage(token="t", data="ZGF0YQ==", hash="h", timestamp=1.0)


def client_for(handler):
    return CentralClient(
        base_url=CENTRAL_URL,
        api_key="test-api-key",
        establishment_id=ESTABLISHMENT_ID,
        transport=httpx.MockTransport(handler),
    )


class TestHealthProbe:
    async def test_reachable(self, central, central_stub):
        assert await central.check_health() is True
        assert central_stub.health_checks == 1

    async def test_network_error_reads_as_unreachable(self, central, central_stub):
        central_stub.online = False

        assert await central.check_health() is False

    async def test_error_status_reads_as_unreachable(self):
        client = client_for(lambda request: httpx.Response(503))
        try:
            assert await client.check_health() is False
        finally:
            await client.close()

    async def test_probe_hits_base_path(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200)

        client = client_for(handler)
        try:
            await client.check_health()
        finally:
            await client.close()

        assert seen == ["/api/v1/health"]


class TestSendEvents:
    async def test_posts_package_with_identity_headers(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "syncedEvents": ["e1"]})

        client = client_for(handler)
        try:
            response = await client.send_events(PACKAGE, headers={"X-Sync-Nonce": "abc"})
        finally:
            await client.close()

        assert response.success is True
        assert response.synced_events == ["e1"]
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/v1/sync/events"
        assert request.headers["X-API-Key"] == "test-api-key"
        assert request.headers["X-Establishment-Id"] == ESTABLISHMENT_ID
        assert request.headers["X-Sync-Nonce"] == "abc"
        assert request.headers["User-Agent"] == "edge-sync-local-system/1.0"
        assert SecureSyncPackage.model_validate_json(request.content) == PACKAGE

    @pytest.mark.parametrize("status_code", [400, 500, 503])
    async def test_non_success_status(self, status_code):
        client = client_for(lambda request: httpx.Response(status_code))
        try:
            with pytest.raises(CentralUnavailableError) as excinfo:
                await client.send_events(PACKAGE)
        finally:
            await client.close()

        assert excinfo.value.status_code == status_code

    async def test_unreadable_body(self):
        client = client_for(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        try:
            with pytest.raises(CentralUnavailableError):
                await client.send_events(PACKAGE)
        finally:
            await client.close()

    async def test_network_error(self, central, central_stub):
        central_stub.online = False

        with pytest.raises(CentralUnavailableError, match="unreachable"):
            await central.send_events(PACKAGE)

    async def test_rejection_is_returned_not_raised(self, central, central_stub):
        response = await central.send_events(PACKAGE)

        assert response.success is False
        assert response.message == "Invalid token"
