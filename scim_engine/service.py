"""Per-resource-type operations built from the engine pieces.

:class:`ResourceService` is what an HTTP layer (or the bulk coordinator)
calls for one endpoint such as ``/Users``: it combines an injected
adapter with the query processor and the patch engine.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from .adapters.base import ResourceAdapter
from .patch import PatchOperation, apply_patch, parse_patch_request
from .query import QueryResult, QuerySpec, project, query
from .resource import clone, ensure_single_primary, resource_version
from .schemas import ResourceSchema

logger = logging.getLogger(__name__)


@dataclass
class ServiceOptions:
    """Behaviour switches shared by the services and the bulk coordinator.

    Attributes:
        base_url:               Public URL prefix used for ``location`` values
        ensure_single_primary:  Clear extra ``primary: true`` flags on write
        bulk_enabled:           Whether ``/Bulk`` requests are accepted
        max_bulk_operations:    Largest accepted bulk request
        max_results:            Cap on resources returned by one list query
    """

    base_url: str = ""
    ensure_single_primary: bool = False
    bulk_enabled: bool = True
    max_bulk_operations: int = 1000
    max_results: Optional[int] = None


class ResourceService:
    """CRUD, list and PATCH for one resource type.

    Args:
        adapter:   Storage for this resource type
        schema:    Attribute metadata used for filtering, patching and projection
        endpoint:  Endpoint name without slash, e.g. ``Users``
        options:   Shared :class:`ServiceOptions`
    """

    def __init__(self, adapter: ResourceAdapter, schema: Optional[ResourceSchema] = None,
                 endpoint: Optional[str] = None, options: Optional[ServiceOptions] = None):
        self.adapter = adapter
        self.schema = schema
        self.endpoint = endpoint or (schema.core.get("endpoint") if schema else None) or "Resources"
        self.options = options or ServiceOptions()

    def get(self, resource_id: str, attributes: Optional[List[str]] = None,
            excluded: Optional[List[str]] = None) -> Dict[str, Any]:
        return project(self.adapter.read(resource_id), attributes, excluded, self.schema)

    def list(self, spec: Optional[QuerySpec] = None) -> QueryResult:
        spec = spec or QuerySpec()
        limit = self.options.max_results
        if limit is not None and (spec.count is None or spec.count > limit):
            logger.debug("Capping %s query count at %d", self.endpoint, limit)
            spec = QuerySpec(spec.filter, spec.sort_by, spec.sort_order, spec.start_index,
                             limit, spec.attributes, spec.excluded_attributes)
        return query(self.adapter, spec, self.schema)

    def create(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        created = self.adapter.create(self._prepare(resource))
        return project(created, schema=self.schema)

    def replace(self, resource_id: str, resource: Dict[str, Any],
                version: Optional[str] = None) -> Dict[str, Any]:
        replaced = self.adapter.replace(resource_id, self._prepare(resource), version)
        return project(replaced, schema=self.schema)

    def patch(self, resource_id: str,
              operations: Union[Dict[str, Any], Sequence[Union[PatchOperation, Dict[str, Any]]]],
              version: Optional[str] = None) -> Dict[str, Any]:
        """Read, patch and write back one resource.

        ``operations`` is either a full PatchOp body or a list of operations.
        The write is conditional on the version that was read (or on
        ``version`` when given), so a concurrent write in between surfaces as
        :class:`~scim_engine.errors.ConcurrentModification` instead of being
        silently overwritten.
        """
        if isinstance(operations, dict):
            operations = parse_patch_request(operations)
        current = self.adapter.read(resource_id)
        expected = version if version is not None else resource_version(current)
        patched = apply_patch(current, operations, self.schema)
        logger.debug("Patched %s %s with %d operation(s)", self.endpoint, resource_id, len(operations))
        replaced = self.adapter.replace(resource_id, self._prepare(patched), expected)
        return project(replaced, schema=self.schema)

    def delete(self, resource_id: str, version: Optional[str] = None) -> None:
        self.adapter.delete(resource_id, version)

    def location(self, resource_id: str) -> str:
        return f"{self.options.base_url.rstrip('/')}/{self.endpoint}/{resource_id}"

    def _prepare(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        if self.options.ensure_single_primary:
            return ensure_single_primary(clone(resource))
        return resource
