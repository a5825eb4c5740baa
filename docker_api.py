"""Docker Engine API client over Unix socket.

Read-side access to the Docker daemon for dc-update: container
inspection and the local image inventory.  Pulls and lifecycle
operations (stop/remove/start) go through the docker CLI instead, so
that registry logins apply and compose keeps owning the service's
containers.
No external dependencies, only the Python stdlib (http.client, socket).
"""

import http.client
import json
import logging
import os
import socket
import urllib.parse
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Docker Engine API version, compatible with Docker 20.10+
API_VERSION = "v1.41"

DEFAULT_SOCKET = "/var/run/docker.sock"


class DockerAPIError(Exception):
    """Error from the Docker Engine API."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Docker API error {status}: {message}")


class UnixHTTPConnection(http.client.HTTPConnection):
    """HTTPConnection subclass that connects via a Unix domain socket."""

    def __init__(self, socket_path: str, timeout: int = 30):
        # host is unused for the actual connection but required by HTTPConnection
        super().__init__("localhost", timeout=timeout)
        self._socket_path = socket_path

    def connect(self):
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.settimeout(self.timeout)
        self.sock.connect(self._socket_path)


class DockerClient:
    """Client for the Docker Engine API over Unix socket."""

    def __init__(self, socket_path: Optional[str] = None):
        if socket_path is None:
            host = os.environ.get("DOCKER_HOST", "")
            if host.startswith("unix://"):
                socket_path = host[len("unix://"):]
            elif host:
                socket_path = host
            else:
                socket_path = DEFAULT_SOCKET
        self.socket_path = socket_path

    def _request(self, method: str, path: str, body: Any = None,
                 query: Optional[Dict[str, str]] = None,
                 timeout: int = 30, raw: bool = False) -> Any:
        """Send an HTTP request to the Docker Engine API.

        Creates a fresh connection per call, so concurrent callers never
        share a socket.

        Returns parsed JSON, or the decoded body text unparsed when *raw*
        is True.

        Transport problems (missing socket, refused connection, timeouts)
        propagate as ``OSError``.
        """
        url = f"/{API_VERSION}{path}"
        if query:
            url += "?" + urllib.parse.urlencode(query)

        headers: Dict[str, str] = {}
        encoded_body: Optional[bytes] = None

        if body is not None:
            encoded_body = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        logger.debug("%s %s", method, url)
        conn = UnixHTTPConnection(self.socket_path, timeout=timeout)
        try:
            conn.request(method, url, body=encoded_body, headers=headers)
            response = conn.getresponse()
            data = response.read().decode("utf-8", errors="replace")

            if response.status >= 400:
                # Try to extract message from JSON error body
                try:
                    msg = json.loads(data).get("message", data)
                except (json.JSONDecodeError, AttributeError):
                    msg = data.strip()
                raise DockerAPIError(response.status, msg)

            if raw:
                return data

            if response.status == 204 or not data:
                return None

            return json.loads(data)
        finally:
            conn.close()

    def ping(self) -> bool:
        """Check the daemon answers ``GET /_ping``."""
        return self._request("GET", "/_ping", timeout=5, raw=True).strip() == "OK"

    # ── Image operations ──────────────────────────────────────────

    def list_images(self) -> List[Dict[str, Any]]:
        """List local images (equivalent to ``docker images``).

        Returns list of dicts with keys like ``Id``, ``RepoTags``,
        ``RepoDigests``, ``Created``.
        """
        result = self._request("GET", "/images/json")
        return result or []

    # ── Container operations ──────────────────────────────────────

    def inspect_container(self, id_or_name: str) -> Dict[str, Any]:
        """Inspect a container (equivalent to ``docker inspect``).

        Returns the full container JSON.  A missing container raises
        ``DockerAPIError`` with status 404.
        """
        return self._request("GET", f"/containers/{id_or_name}/json")
