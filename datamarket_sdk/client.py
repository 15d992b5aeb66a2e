"""Data Market API client."""

import requests
from typing import Optional


class MarketClient:
    """Client for the Data Market consumer API."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 30.0):
        """Initialize client."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.token: Optional[str] = None

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response.json()

    def login(self, account: str, password: str) -> dict:
        """Open a session; later calls are made on behalf of ``account``."""
        result = self._request("POST", "/v1/sessions", json={"account": account, "password": password})
        self.token = result["token"]
        self.session.headers.update({"x-session-token": self.token})
        return result

    def logout(self) -> None:
        """Close the session on the server and forget the token."""
        if self.token is None:
            return
        try:
            self._request("DELETE", "/v1/sessions")
        finally:
            self.token = None
            self.session.headers.pop("x-session-token", None)

    def account(self) -> dict:
        """Get address, balance and token symbol."""
        return self._request("GET", "/v1/account")

    def measurements(self) -> list:
        """List stored measurements with current prices."""
        return self._request("GET", "/v1/measurements")

    def purchases(self) -> list:
        """List completed purchases of the logged-in account."""
        return self._request("GET", "/v1/wallet/purchases")

    def transfers(self) -> list:
        """List token transfers sent or received by the logged-in account."""
        return self._request("GET", "/v1/wallet/transfers")

    def purchase(self, measurement_hash: str) -> dict:
        """Buy a measurement."""
        return self._request("POST", "/v1/purchases", json={"hash": measurement_hash})

    def retrieve(self, measurement_hash: str) -> dict:
        """Get the value of a purchased measurement."""
        return self._request("GET", f"/v1/measurements/{measurement_hash}/value")
