"""``ResourceAdapter`` over HTTP, backed by a third-party SCIM server.

Filtering, sorting, paging and attribute selection are all pushed down to
the server as query parameters, and the returned :class:`Listing` says so.
Error responses are mapped back onto the engine's exception types with
:func:`~scim_engine.errors.error_from_response`.
"""

import logging
from typing import Any, Dict, Optional

from ..errors import error_from_response
from ..http_client import SCIMClient, SCIMResponse
from ..resource import get_attr
from .base import Listing

logger = logging.getLogger(__name__)


class RemoteAdapter:
    """Adapter for one endpoint of a remote SCIM server.

    Args:
        client:     Configured :class:`SCIMClient`
        endpoint:   Endpoint path, e.g. ``/Users``
        use_etags:  Send ``If-Match`` with versions on PUT and DELETE.  Off by
                    default because many servers do not implement ETags.
    """

    def __init__(self, client: SCIMClient, endpoint: str, use_etags: bool = False):
        self.client = client
        self.endpoint = "/" + endpoint.strip("/")
        self.use_etags = use_etags

    def create(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        return self._check(self.client.post(self.endpoint, resource))

    def read(self, resource_id: str) -> Dict[str, Any]:
        return self._check(self.client.get(f"{self.endpoint}/{resource_id}"))

    def replace(self, resource_id: str, resource: Dict[str, Any],
                version: Optional[str] = None) -> Dict[str, Any]:
        resp = self.client.put(f"{self.endpoint}/{resource_id}", resource,
                               extra_headers=self._if_match(version))
        return self._check(resp)

    def delete(self, resource_id: str, version: Optional[str] = None) -> None:
        self._check(self.client.delete(f"{self.endpoint}/{resource_id}",
                                       extra_headers=self._if_match(version)))

    def list(self, spec) -> Listing:
        body = self._check(self.client.get(self.endpoint, params=spec.to_params())) or {}
        resources = get_attr(body, "Resources") or []
        total = get_attr(body, "totalResults")
        logger.debug("GET %s returned %d of %s resources", self.endpoint, len(resources), total)
        return Listing(
            resources=resources,
            total_results=total if isinstance(total, int) else len(resources),
            filtered=True,
            sorted=True,
            paginated=True,
            projected=True,
        )

    # -- Helpers -------------------------------------------------------------

    def _if_match(self, version: Optional[str]) -> Optional[Dict[str, str]]:
        if self.use_etags and version:
            return {"If-Match": version}
        return None

    def _check(self, resp: SCIMResponse) -> Any:
        """Return the JSON body of a successful response; raise the mapped error otherwise."""
        if resp.ok:
            return resp.json() if resp.body else None
        try:
            body = resp.json()
        except ValueError:
            body = None
        error = error_from_response(resp.status_code, body)
        logger.debug("%s responded %d: %s", self.endpoint, resp.status_code, error)
        raise error
