"""
HTTP client for the daemon control API (used by the CLI)
"""

import logging
from typing import Any, Dict, Optional

import requests

from .errors import DaemonUnavailable

logger = logging.getLogger(__name__)


class DaemonClient:
    def __init__(self, host: str = "127.0.0.1", port: int = 8765, timeout: float = 5.0):
        self.api_base = f"http://{host}:{port}/api/v1"
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, route: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.api_base}{route}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise DaemonUnavailable(f"API {method} {route} failed: {e}") from e

        if response.status_code >= 400:
            raise DaemonUnavailable(f"API {method} {route} failed: HTTP {response.status_code}: {response.text}")
        return response.json() if response.content else {}

    def status(self) -> Dict[str, Any]:
        return self._request("GET", "/status")

    def list_sessions(self) -> Dict[str, Any]:
        return self._request("GET", "/sessions")

    def register(self, session_id: int, origin: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/sessions", {"id": session_id, "origin": origin})

    def deregister(self, session_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/sessions/{session_id}")

    def reset(self) -> Dict[str, Any]:
        return self._request("POST", "/reset")

    def cleanup(self) -> Dict[str, Any]:
        return self._request("POST", "/cleanup")

    def thermal(self) -> Dict[str, Any]:
        return self._request("POST", "/thermal")

    def set_prevention(self, enabled: bool) -> Dict[str, Any]:
        return self._request("PUT", "/prevention", {"enabled": enabled})
