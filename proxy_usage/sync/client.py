"""
Proxy management API client.

Fetches authoritative usage figures from the proxy's management endpoint.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from proxy_usage.config.loader import ProxyConfig
from .report import SyncError

logger = logging.getLogger(__name__)

MANAGEMENT_KEY_HEADER = "X-Management-Key"


class UsageClient:
    """HTTP client for the proxy's /v0/management usage endpoints.

    Every failure (network, non-success status, malformed JSON) is raised
    as SyncError so callers can report it without partial effects.
    """

    def __init__(self, config: ProxyConfig, transport: Optional[httpx.BaseTransport] = None):
        """Initialize the client.

        Args:
            config: Proxy connection settings
            transport: Optional httpx transport, used by tests
        """
        self.config = config
        self._transport = transport

    @property
    def base_url(self) -> str:
        return f"http://{self.config.host}:{self.config.port}/v0/management"

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers={MANAGEMENT_KEY_HEADER: self.config.management_key},
            timeout=timeout,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, timeout: float, **kwargs: Any) -> Any:
        try:
            with self._client(timeout) as client:
                response = client.request(method, path, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SyncError(f"Failed to reach proxy at {self.base_url}: {e}. Is the proxy running?") from e

        if not response.is_success:
            raise SyncError(
                f"Usage API returned status {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise SyncError(f"Failed to parse usage response: {e}") from e

    def fetch_usage(self) -> Dict[str, Any]:
        """GET the usage report.

        Returns:
            Decoded JSON payload

        Raises:
            SyncError: On network error, non-success status or invalid JSON
        """
        payload = self._request("GET", "/usage", self.config.timeout)
        logger.debug("Fetched usage report from %s", self.base_url)
        return payload

    def export_usage(self) -> Any:
        """Download the proxy's usage backup."""
        return self._request("GET", "/usage/export", max(self.config.timeout, 10.0))

    def import_usage(self, data: Any) -> Any:
        """Upload a usage backup previously produced by export_usage."""
        return self._request("POST", "/usage/import", max(self.config.timeout, 30.0), json=data)
