"""Data Market Python SDK."""

__version__ = "0.1.0"

from datamarket_sdk.client import MarketClient
from datamarket_sdk.signing import build_storage_request, sign_storage_request

__all__ = ["MarketClient", "build_storage_request", "sign_storage_request"]
