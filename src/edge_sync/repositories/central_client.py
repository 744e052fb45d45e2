"""HTTP client for the central system.

Two calls matter to the edge node:

- GET  {base}/health        connectivity probe (bounded, never raises)
- POST {base}/sync/events   upload of one SecureSyncPackage

Network faults and non-2xx answers are reported as CentralUnavailableError,
which callers classify as "offline" and retry later.
"""

import logging
from collections.abc import Mapping

import httpx
from pydantic import ValidationError

from edge_sync.config import settings
from edge_sync.dto.wire import CentralSyncResponse, SecureSyncPackage
from edge_sync.errors import CentralUnavailableError

logger = logging.getLogger(__name__)

USER_AGENT = "edge-sync-local-system/1.0"


class CentralClient:
    """Async HTTP client for the central system.

    Example:
        ```python
        client = CentralClient.create()
        if await client.check_health():
            response = await client.send_events(package)
        await client.close()
        ```
    """

    name = "central_client"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        establishment_id: str | None = None,
        probe_timeout: float | None = None,
        transmit_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the central client.

        Args:
            base_url: Central API base URL. Defaults to settings.central_api_url.
            api_key: API key sent as X-API-Key. Defaults to settings.
            establishment_id: Sent as X-Establishment-Id. Defaults to settings.
            probe_timeout: Health probe timeout in seconds.
            transmit_timeout: Batch upload timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._base_url = (base_url or settings.central_api_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.central_api_key
        self._establishment_id = establishment_id or settings.establishment_id
        self._probe_timeout = probe_timeout or settings.probe_timeout
        self._transmit_timeout = transmit_timeout or settings.transmit_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-load the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "X-API-Key": self._api_key,
                    "X-Establishment-Id": self._establishment_id,
                    "User-Agent": USER_AGENT,
                },
                timeout=self._transmit_timeout,
                transport=self._transport,
            )
        return self._client

    @classmethod
    def create(
        cls,
        base_url: str | None = None,
        api_key: str | None = None,
    ) -> "CentralClient":
        """Factory method to create CentralClient with defaults.

        Args:
            base_url: Central API URL. If None, uses settings.
            api_key: API key. If None, uses settings.

        Returns:
            Configured CentralClient
        """
        return cls(base_url=base_url, api_key=api_key)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def check_health(self) -> bool:
        """Probe the central system.

        Returns:
            True if it answered 2xx within the probe timeout, False otherwise
        """
        try:
            response = await self.client.get("/health", timeout=self._probe_timeout)
        except httpx.HTTPError as e:
            logger.debug("Central health probe failed: %s", e)
            return False
        return response.is_success

    async def send_events(
        self,
        package: SecureSyncPackage,
        headers: Mapping[str, str] | None = None,
    ) -> CentralSyncResponse:
        """Upload one sync package.

        Args:
            package: The secure package to post
            headers: Extra security headers for this request

        Returns:
            The central system's parsed answer

        Raises:
            CentralUnavailableError: On network errors, timeouts, non-2xx
                status or an unreadable response body
        """
        try:
            response = await self.client.post(
                "/sync/events",
                json=package.to_wire(),
                headers=dict(headers or {}),
                timeout=self._transmit_timeout,
            )
        except httpx.HTTPError as e:
            raise CentralUnavailableError(f"Central system unreachable: {e}") from e

        if not response.is_success:
            raise CentralUnavailableError(
                f"Central system answered HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return CentralSyncResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise CentralUnavailableError(
                f"Unreadable response from central system: {e}",
                status_code=response.status_code,
            ) from e

    async def initialize(self) -> None:
        # Reachability is the offline cache's concern; startup must not need the network.
        logger.info("Central client configured for %s", self._base_url)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        """Close the async HTTP client.

        Should be called when shutting down the application.
        """
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def shutdown(self) -> None:
        await self.close()
