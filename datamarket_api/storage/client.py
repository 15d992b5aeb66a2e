"""HTTP clients for off-chain content: the IPFS gateway and the storage service."""

import logging
from typing import Optional

import httpx

from datamarket_api.errors import StorageDenied, StorageTimeout, StorageUnavailable
from datamarket_api.security.request_signing import SignedStorageRequest
from datamarket_api.settings import get_settings

logger = logging.getLogger(__name__)


class OffChainClient:
    """Fetches encrypted content by CID and plaintext measurements by signed request."""

    def __init__(self, http: Optional[httpx.Client] = None, gateway_url: Optional[str] = None):
        settings = get_settings()
        self.gateway_url = (gateway_url or settings.ipfs_gateway_url).rstrip("/")
        self.http = http or httpx.Client(timeout=settings.storage_timeout_seconds)

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Off-chain request timed out: {url}")
            raise StorageTimeout(f"Storage at {url} did not answer in time") from e
        except httpx.HTTPError as e:
            logger.error(f"Off-chain request failed: {url}: {e}")
            raise StorageUnavailable(f"Storage at {url} could not be reached") from e

        if response.status_code in (401, 403):
            raise StorageDenied(f"Storage rejected the request ({response.status_code})")
        if not 200 <= response.status_code < 300:
            raise StorageUnavailable(f"Storage answered {response.status_code}")
        return response

    def fetch_content(self, cid: str) -> bytes:
        """Get encrypted content from the IPFS gateway."""
        return self._send("GET", f"{self.gateway_url}/ipfs/{cid}").content

    def fetch_measurement(self, locator: str, request: SignedStorageRequest) -> str:
        """POST a signed request to the storage service and return the measurement."""
        response = self._send("POST", locator, json=request.to_json())
        try:
            return response.json()["measurement"]
        except (ValueError, KeyError, TypeError) as e:
            raise StorageUnavailable("Storage answered with an unexpected body") from e

    def close(self) -> None:
        self.http.close()


_offchain_client: Optional[OffChainClient] = None


def get_offchain_client() -> OffChainClient:
    """Get or create the off-chain client instance."""
    global _offchain_client
    if _offchain_client is None:
        _offchain_client = OffChainClient()
    return _offchain_client
