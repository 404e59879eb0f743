"""HTTP client for the job core admin API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()

DEFAULT_API_URL = "http://localhost:8000"


class JobCoreError(Exception):
    """Base exception for admin API errors"""

    pass


class JobCoreClient:
    """Typed wrapper around the /v1 admin endpoints"""

    def __init__(self, base_url: str = DEFAULT_API_URL, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Unwrap the response envelope or raise JobCoreError"""
        try:
            data = response.json()
        except ValueError:
            raise JobCoreError(f"Invalid JSON response: {response.status_code}") from None

        if response.status_code >= 400 or not data.get("ok", False):
            error_msg = data.get("error", {}).get("message", "Unknown error")
            console.print(Panel(f"[red]{error_msg}[/red]", title="API Error"))
            raise JobCoreError(f"API Error {response.status_code}: {error_msg}")

        return data.get("data", {})

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.client.request(method, f"/v1{path}", **kwargs)
        except httpx.RequestError as e:
            raise JobCoreError(f"Connection failed: {e}") from None
        return self._handle_response(response)

    # Health
    def health_check(self) -> dict[str, Any]:
        return self._request("GET", "/healthz")

    # Jobs
    def get_stats(self) -> dict[str, Any]:
        return self._request("GET", "/jobs/stats")

    def list_jobs(
        self,
        status: list[str] | None = None,
        job_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if job_type:
            params["job_type"] = job_type
        return self._request("GET", "/jobs", params=params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        return self._request("GET", f"/jobs/{job_id}")

    def enqueue(
        self,
        job_type: str,
        idempotency_key: str,
        payload: dict[str, Any],
        max_retries: int | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "job_type": job_type,
            "idempotency_key": idempotency_key,
            "payload": payload,
        }
        if max_retries is not None:
            body["max_retries"] = max_retries
        return self._request("POST", "/jobs", json=body)

    def retry_job(self, job_id: str) -> dict[str, Any]:
        return self._request("POST", f"/jobs/{job_id}/retry")

    # Outbox
    def outbox_status(self) -> dict[str, Any]:
        return self._request("GET", "/outbox/status")

    # Meetings
    def enrich_meeting(self, meeting_id: str) -> dict[str, Any]:
        return self._request("POST", f"/meetings/{meeting_id}/enrich")

    def force_process_meeting(self, meeting_id: str, admin_id: str, reason: str) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/meetings/{meeting_id}/force-process",
            json={"admin_id": admin_id, "reason": reason},
        )
