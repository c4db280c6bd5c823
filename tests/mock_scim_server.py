"""Mock SCIM server for testing the HTTP client and the remote adapter.

Runs a SCIM server backed by the engine itself (in-memory adapters, the
query processor, the patch engine and the bulk coordinator) using
``http.server`` from stdlib in a background thread.

Non-conformance flags (pass via ``non_conformances`` dict):

  ``throttle_count``  Return 429 for the first N requests, with
                        ``Retry-After: 0`` header.
  ``ignore_paging``   Ignore ``startIndex``/``count`` and return every
                        matching resource.

Every request is recorded in ``server.requests`` as
``(method, path_with_query, headers)`` so tests can inspect what was sent.

Usage::

    with MockSCIMServer() as server:
        client = SCIMClient(server.base_url)
        resp = client.get("/Users")
"""

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlsplit

from scim_engine.adapters.memory import InMemoryAdapter
from scim_engine.bulk import BulkCoordinator
from scim_engine.errors import ERROR_URN, NotFound, SCIMError
from scim_engine.query import QuerySpec
from scim_engine.schemas import GROUP, USER
from scim_engine.service import ResourceService, ServiceOptions


class MockSCIMHandler(BaseHTTPRequestHandler):
    """Routes SCIM HTTP requests to the engine services stored on the server."""

    def log_message(self, format, *args):
        """Suppress request logging during tests to keep output clean."""
        pass

    # -- Throttle gate -------------------------------------------------------

    def _throttle_check(self) -> bool:
        """Return 429 if ``throttle_count > 0`` and decrement.  Returns True if throttled."""
        self.server.requests.append((self.command, self.path, dict(self.headers)))
        tc = self.server.non_conformances.get("throttle_count", 0)
        if tc > 0:
            self.server.non_conformances["throttle_count"] = tc - 1
            self._send_json(429, {
                "schemas": [ERROR_URN],
                "status": "429",
                "detail": "Too Many Requests",
            }, {"Retry-After": "0"})
            return True
        return False

    # -- Response helpers ----------------------------------------------------

    def _send_json(self, status: int, body: Any, extra_headers: Optional[Dict[str, str]] = None):
        self.send_response(status)
        self.send_header("Content-Type", "application/scim+json")
        if extra_headers:
            for k, v in extra_headers.items():
                self.send_header(k, v)
        payload = json.dumps(body).encode("utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _send_scim_error(self, error: SCIMError):
        self._send_json(error.status, error.to_dict())

    def _read_body(self) -> Optional[dict]:
        """Read and parse the request body as JSON.  Returns None if empty or invalid."""
        length = int(self.headers.get("Content-Length", 0))
        if length == 0:
            return None
        raw = self.rfile.read(length)
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None

    def _parse_path(self):
        """Extract ``(endpoint, resource_id, query_params)`` from the URL."""
        parts = urlsplit(self.path)
        segments = [p for p in parts.path.split("/") if p]
        endpoint = segments[0] if segments else None
        resource_id = segments[1] if len(segments) > 1 else None
        return endpoint, resource_id, parse_qs(parts.query)

    def _service(self, endpoint: Optional[str]) -> ResourceService:
        service = self.server.services.get(endpoint)
        if service is None:
            raise NotFound(f"Unknown resource type: {endpoint}")
        return service

    def _handle(self, action):
        if self._throttle_check():
            return
        try:
            action()
        except SCIMError as e:
            self._send_scim_error(e)

    # -- HTTP method handlers ------------------------------------------------

    def do_GET(self):
        def action():
            endpoint, resource_id, params = self._parse_path()
            service = self._service(endpoint)
            if resource_id is not None:
                return self._send_json(200, service.get(resource_id))
            spec = QuerySpec.from_params(params)
            if self.server.non_conformances.get("ignore_paging"):
                spec.start_index, spec.count = 1, None
            self._send_json(200, service.list(spec).to_dict())
        self._handle(action)

    def do_POST(self):
        def action():
            endpoint, _, _ = self._parse_path()
            body = self._read_body()
            if body is None:
                raise SCIMError("Invalid or missing JSON body", scim_type="invalidSyntax")
            if endpoint == "Bulk":
                return self._send_json(200, self.server.bulk.execute(body).to_dict())
            service = self._service(endpoint)
            created = service.create(body)
            self._send_json(201, created, {"Location": service.location(created["id"])})
        self._handle(action)

    def do_PUT(self):
        def action():
            endpoint, resource_id, _ = self._parse_path()
            body = self._read_body()
            if body is None:
                raise SCIMError("Invalid or missing JSON body", scim_type="invalidSyntax")
            version = self.headers.get("If-Match")
            self._send_json(200, self._service(endpoint).replace(resource_id, body, version))
        self._handle(action)

    def do_PATCH(self):
        def action():
            endpoint, resource_id, _ = self._parse_path()
            body = self._read_body()
            if body is None:
                raise SCIMError("Invalid or missing JSON body", scim_type="invalidSyntax")
            self._send_json(200, self._service(endpoint).patch(resource_id, body))
        self._handle(action)

    def do_DELETE(self):
        def action():
            endpoint, resource_id, _ = self._parse_path()
            self._service(endpoint).delete(resource_id, self.headers.get("If-Match"))
            self.send_response(204)
            self.end_headers()
        self._handle(action)


class MockSCIMServer:
    """Engine-backed in-memory SCIM server for testing.

    Runs in a background daemon thread.  Use as a context manager::

        with MockSCIMServer(users=[{...}]) as server:
            # server.base_url is available
            ...

    Args:
        port:              TCP port to listen on (0 = auto-assign).
        non_conformances:  Dict of non-conformance flags (see module docstring).
        users:             Users to preload.
        groups:            Groups to preload.
    """

    def __init__(self, port: int = 0, non_conformances: Optional[Dict[str, Any]] = None,
                 users: Optional[list] = None, groups: Optional[list] = None):
        self.non_conformances = dict(non_conformances or {})

        self.server = HTTPServer(("127.0.0.1", port), MockSCIMHandler)
        actual_port = self.server.server_address[1]
        self.server.base_url = f"http://127.0.0.1:{actual_port}"
        self.server.non_conformances = self.non_conformances
        self.server.requests = []

        options = ServiceOptions(base_url=self.server.base_url)
        self.users = InMemoryAdapter("User", base_url=self.server.base_url, resources=users)
        self.groups = InMemoryAdapter("Group", base_url=self.server.base_url, resources=groups)
        self.server.services = {
            "Users": ResourceService(self.users, USER, options=options),
            "Groups": ResourceService(self.groups, GROUP, options=options),
        }
        self.server.bulk = BulkCoordinator(self.server.services, options)
        self._thread: Optional[threading.Thread] = None

    @property
    def base_url(self) -> str:
        return self.server.base_url

    @property
    def requests(self) -> list:
        return self.server.requests

    def start(self):
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self):
        self.server.shutdown()
        self.server.server_close()
        if self._thread:
            self._thread.join(timeout=5)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
