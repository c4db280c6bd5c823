"""In-memory reference implementation of :class:`ResourceAdapter`.

Keeps resources in a dict keyed by id.  Server-managed fields (``id`` and
``meta``) are assigned on every write, and ``meta.version`` is a weak ETag
that changes with each write so callers can do optimistic concurrency.

``list()`` returns every stored resource and lets the query processor do
filtering, sorting and pagination.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..errors import ConcurrentModification, Conflict, NotFound
from ..resource import get_attr, resource_version, set_attr

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class InMemoryAdapter:
    """Dict-backed resource storage for one resource type.

    Args:
        resource_type:  SCIM ``resourceType`` written into ``meta`` (e.g. ``User``)
        endpoint:       Endpoint path used for ``meta.location`` (e.g. ``/Users``)
        base_url:       Prefix for ``meta.location``
        resources:      Initial resources to load; they are stored as given,
                        keeping any ``id`` and ``meta`` they carry
    """

    def __init__(self, resource_type: str, endpoint: Optional[str] = None,
                 base_url: str = "", resources: Optional[Iterable[Dict[str, Any]]] = None):
        self.resource_type = resource_type
        self.endpoint = endpoint or f"/{resource_type}s"
        self.base_url = base_url.rstrip("/")
        self._store: Dict[str, Dict[str, Any]] = {}
        self._counter = 0
        self._lock = threading.Lock()
        for resource in resources or []:
            self.create(resource, keep_meta=True)

    # -- ResourceAdapter -----------------------------------------------------

    def create(self, resource: Dict[str, Any], keep_meta: bool = False) -> Dict[str, Any]:
        stored = copy.deepcopy(resource)
        with self._lock:
            resource_id = get_attr(stored, "id") or str(uuid.uuid4())
            if resource_id in self._store:
                raise Conflict(f"Resource with ID {resource_id} already exists")
            set_attr(stored, "id", resource_id)
            if not (keep_meta and isinstance(get_attr(stored, "meta"), dict)):
                self._stamp(stored, resource_id, created=None)
            self._store[resource_id] = stored
        logger.debug("Created %s %s", self.resource_type, resource_id)
        return copy.deepcopy(stored)

    def read(self, resource_id: str) -> Dict[str, Any]:
        with self._lock:
            stored = self._store.get(resource_id)
            if stored is None:
                raise NotFound(resource_id=resource_id)
            return copy.deepcopy(stored)

    def replace(self, resource_id: str, resource: Dict[str, Any],
                version: Optional[str] = None) -> Dict[str, Any]:
        stored = copy.deepcopy(resource)
        with self._lock:
            current = self._get_checked(resource_id, version)
            created = get_attr(get_attr(current, "meta") or {}, "created")
            set_attr(stored, "id", resource_id)
            self._stamp(stored, resource_id, created=created)
            self._store[resource_id] = stored
        logger.debug("Replaced %s %s", self.resource_type, resource_id)
        return copy.deepcopy(stored)

    def delete(self, resource_id: str, version: Optional[str] = None) -> None:
        with self._lock:
            self._get_checked(resource_id, version)
            del self._store[resource_id]
        logger.debug("Deleted %s %s", self.resource_type, resource_id)

    def list(self, spec=None) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._store.values()]

    # -- Helpers -------------------------------------------------------------

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._store)

    def __len__(self):
        return len(self._store)

    def _get_checked(self, resource_id: str, version: Optional[str]) -> Dict[str, Any]:
        current = self._store.get(resource_id)
        if current is None:
            raise NotFound(resource_id=resource_id)
        actual = resource_version(current)
        if version is not None and version != actual:
            raise ConcurrentModification(
                f"Resource {resource_id} was modified (expected version {version}, found {actual})",
                expected=version, actual=actual,
            )
        return current

    def _stamp(self, resource: Dict[str, Any], resource_id: str, created: Optional[str]) -> None:
        """Assign server-managed ``meta`` fields.  Caller holds the lock."""
        self._counter += 1
        now = _now()
        set_attr(resource, "meta", {
            "resourceType": self.resource_type,
            "created": created or now,
            "lastModified": now,
            "location": f"{self.base_url}{self.endpoint}/{resource_id}",
            "version": f'W/"{self._counter}"',
        })
