"""
Sample Audit Log Client

Shows how a protected site reports security events to the audit log
service and reads them back.
"""

import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx


class AuditLogClient:
    """
    Client for the Audit Log Service HTTP API.
    """

    def __init__(self, api_url: str, token: Optional[str] = None, timeout: float = 10.0):
        """
        Initialize the client.

        Args:
            api_url: Base URL of the audit log API
            token: Optional bearer token; events are attributed to its user
            timeout: Request timeout in seconds
        """
        self.api_url = api_url.rstrip('/')
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.Client(headers=headers, timeout=timeout)

    def log(self, event_type: str, message: str, severity: str = "info") -> dict:
        """
        Record a security event.

        Returns:
            API response; ``status`` is ``degraded`` if the event was not stored

        Raises:
            httpx.HTTPError: On API errors
        """
        response = self.client.post(
            f"{self.api_url}/v1/events",
            json={"type": event_type, "message": message, "severity": severity}
        )
        response.raise_for_status()
        return response.json()

    def query(self, **params: Any) -> Dict[str, Any]:
        """
        List events; accepts page, per_page, type, severity, search,
        date_from and date_to.
        """
        response = self.client.get(f"{self.api_url}/v1/events", params=params)
        response.raise_for_status()
        return response.json()

    def purge(self, before: datetime, admin_token: str) -> dict:
        """Delete every event older than ``before`` (operator only)."""
        response = self.client.delete(
            f"{self.api_url}/v1/events",
            params={"before": before.isoformat()},
            headers={"X-Admin-Token": admin_token}
        )
        response.raise_for_status()
        return response.json()

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# Example usage
if __name__ == "__main__":
    api_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

    print("=== Audit Log Client Demo ===\n")

    with AuditLogClient(api_url) as client:
        for event_type, message, severity in [
            ("login_failed", "Failed login for user alice", "warning"),
            ("lockout", "IP locked out after 5 failed logins", "error"),
            ("option_update", "Firewall rules updated", "info"),
        ]:
            result = client.log(event_type, message, severity)
            print(f"{event_type:<15} -> {result}")

        print("\nMost recent warnings:")
        page = client.query(severity="warning", per_page=5)
        print(json.dumps(page, indent=2, default=str))

    print(f"\nDone at {datetime.now(timezone.utc).isoformat()}")
