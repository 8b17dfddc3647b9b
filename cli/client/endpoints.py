"""API Endpoint Wrappers - Typed calls against the admin API"""

from typing import Any

from ..utils.config_manager import config
from .base import APIClient, NotifierClientError  # noqa: F401


class NotifierClient:
    """High-level client with typed endpoint methods"""

    def __init__(self, base_url: str | None = None, headers: dict[str, str] | None = None):
        api_config = config.load_config().get("api", {})

        self.api = APIClient(
            base_url=base_url or api_config.get("base_url", "http://localhost:8000"),
            timeout=int(api_config.get("timeout", 30)),
            headers=headers or api_config.get("headers", {}),
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    def list_jobs(
        self,
        status: list[str] | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params=params)

    def get_job(self, job_id: int) -> dict[str, Any]:
        """Get a single job"""
        return self.api.get(f"/jobs/{job_id}")

    def job_stats(self) -> dict[str, Any]:
        """Get queue statistics"""
        return self.api.get("/jobs/stats/overview")

    def replay_job(self, job_id: int) -> dict[str, Any]:
        """Re-queue a permanently failed job"""
        return self.api.post(f"/jobs/{job_id}/replay")

    def cleanup_jobs(self) -> dict[str, Any]:
        """Delete terminal jobs past the retention window"""
        return self.api.post("/jobs/maintenance/cleanup")
