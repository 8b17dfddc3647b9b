"""Base HTTP Client for the Notifier admin API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()


class NotifierClientError(Exception):
    """Base exception for Notifier API errors"""

    pass


class APIClient:
    """HTTP client for the Notifier admin API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.default_headers,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Handle API response and unwrap the success envelope"""
        try:
            data = response.json()
        except ValueError:
            console.print(f"[red]Failed to parse response: {response.text}[/red]")
            raise NotifierClientError(
                f"Invalid JSON response: {response.status_code}"
            ) from None

        if response.status_code >= 400:
            error_msg = data.get("error", {}).get("message", "Unknown error")
            console.print(Panel(f"[red]{error_msg}[/red]", title="API Error"))
            raise NotifierClientError(f"API Error {response.status_code}: {error_msg}")

        if "ok" in data:
            if not data.get("ok", False):
                error_msg = data.get("error", {}).get("message", "Request failed")
                raise NotifierClientError(error_msg)
            return data.get("data", {})

        return data

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = self.client.request(method, f"/v1{path}", **kwargs)
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise NotifierClientError(f"Connection failed: {e}") from None
        return self._handle_response(response)

    def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make GET request"""
        return self._request("GET", path, params=params)

    def post(self, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make POST request"""
        return self._request("POST", path, json=json)
