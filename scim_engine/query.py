"""List queries: filter, sort, paginate and project (RFC 7644 Section 3.4.2).

``query()`` asks the adapter for candidates and then finishes whatever
stages the adapter did not already apply, in this order:

1. filter
2. stable sort, values missing sorting last in either direction
3. count the total
4. slice out the requested page (``startIndex`` is 1-based)
5. project attributes (``attributes`` wins over ``excludedAttributes``)
"""

import copy
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .adapters.base import Listing, ResourceAdapter
from .errors import InvalidValue
from .filters import (
    AttributePath,
    Filter,
    attribute_values,
    compare_values,
    filter_resources,
    is_core_uri,
    parse_filter,
)
from .paths import parse_path
from .resource import del_attr, find_key, get_attr, has_value, primary_or_first
from .schemas import LIST_RESPONSE_URN, ResourceSchema, schema_for_resource

logger = logging.getLogger(__name__)


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


@dataclass
class QuerySpec:
    """A parsed list query.

    ``count`` of ``None`` means "no limit"; ``0`` asks for the total only.
    """

    filter: Optional[Filter] = None
    sort_by: Optional[str] = None
    sort_order: SortOrder = SortOrder.ASCENDING
    start_index: int = 1
    count: Optional[int] = None
    attributes: List[str] = field(default_factory=list)
    excluded_attributes: List[str] = field(default_factory=list)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "QuerySpec":
        """Parse HTTP query parameters (``filter``, ``sortBy``, ``startIndex`` ...).

        Values may be strings or, as ``urllib.parse.parse_qs`` produces,
        lists of strings.  Parameter names are matched case-insensitively.

        Raises:
            InvalidFilter: for a malformed ``filter``.
            InvalidValue: for non-integer paging values or an unknown ``sortOrder``.
        """
        def param(name: str) -> Optional[str]:
            key = find_key(dict(params), name)
            if key is None:
                return None
            value = params[key]
            if isinstance(value, (list, tuple)):
                value = value[0] if value else None
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        spec = cls()
        text = param("filter")
        if text:
            spec.filter = parse_filter(text)
        spec.sort_by = param("sortBy")
        order = param("sortOrder")
        if order:
            try:
                spec.sort_order = SortOrder(order.lower())
            except ValueError:
                raise InvalidValue("sortOrder must be 'ascending' or 'descending'") from None

        start = _parse_int(param("startIndex"), "startIndex")
        if start is not None:
            spec.start_index = max(1, start)
        count = _parse_int(param("count"), "count")
        if count is not None:
            spec.count = max(0, count)

        spec.attributes = _split_list(param("attributes"))
        spec.excluded_attributes = _split_list(param("excludedAttributes"))
        return spec

    def to_params(self) -> Dict[str, str]:
        """Inverse of :meth:`from_params`, for sending the query to a server."""
        params: Dict[str, str] = {}
        if self.filter is not None:
            params["filter"] = str(self.filter)
        if self.sort_by:
            params["sortBy"] = self.sort_by
            params["sortOrder"] = self.sort_order.value
        if self.start_index != 1:
            params["startIndex"] = str(self.start_index)
        if self.count is not None:
            params["count"] = str(self.count)
        if self.attributes:
            params["attributes"] = ",".join(self.attributes)
        elif self.excluded_attributes:
            params["excludedAttributes"] = ",".join(self.excluded_attributes)
        return params


def _parse_int(value: Optional[str], name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise InvalidValue(f"{name} must be an integer, got {value!r}") from None


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class QueryResult:
    resources: List[Dict[str, Any]]
    total_results: int
    start_index: int = 1
    items_per_page: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Render as a ListResponse message body."""
        return {
            "schemas": [LIST_RESPONSE_URN],
            "totalResults": self.total_results,
            "startIndex": self.start_index,
            "itemsPerPage": self.items_per_page,
            "Resources": self.resources,
        }


def query(adapter: ResourceAdapter, spec: QuerySpec,
          schema: Optional[ResourceSchema] = None) -> QueryResult:
    """Run ``spec`` against ``adapter``, completing the stages it left undone."""
    outcome = adapter.list(spec)
    listing = outcome if isinstance(outcome, Listing) else Listing(resources=list(outcome))
    resources = list(listing.resources)

    if listing.paginated:
        if (spec.filter is not None and not listing.filtered) or (spec.sort_by and not listing.sorted):
            logger.warning("Adapter paginated a query it did not fully filter and sort; "
                           "results may be incomplete")
        total = listing.total_results if listing.total_results is not None else len(resources)
    else:
        if spec.filter is not None and not listing.filtered:
            resources = filter_resources(resources, spec.filter, schema)
        if spec.sort_by and not listing.sorted:
            resources = sort_resources(resources, spec.sort_by, spec.sort_order, schema)
        total = len(resources)
        resources = paginate(resources, spec.start_index, spec.count)
    logger.debug("Query matched %d resources, returning %d", total, len(resources))

    if not listing.projected:
        resources = [
            project(r, spec.attributes, spec.excluded_attributes, schema) for r in resources
        ]
    return QueryResult(resources, total, spec.start_index, len(resources))


def paginate(resources: List[Dict[str, Any]], start_index: int = 1,
             count: Optional[int] = None) -> List[Dict[str, Any]]:
    start = max(1, start_index) - 1
    if count is None:
        return resources[start:]
    return resources[start:start + max(0, count)]


# -- Sorting ----------------------------------------------------------------

def sort_value(resource: Dict[str, Any], path: AttributePath) -> Any:
    """The value a resource sorts by.

    Multi-valued attributes sort by their primary element (or the first),
    and complex values by their ``value`` sub-attribute.
    """
    items = attribute_values(resource, AttributePath(path.attribute, None, path.uri))
    item = primary_or_first(items)
    if path.sub_attribute is not None:
        item = get_attr(item, path.sub_attribute) if isinstance(item, dict) else None
    elif isinstance(item, dict):
        item = get_attr(item, "value")
    return item if has_value(item) else None


_TYPE_RANK = {bool: 0, int: 1, float: 1, str: 2}


def sort_resources(resources: List[Dict[str, Any]], sort_by: str,
                   order: SortOrder = SortOrder.ASCENDING,
                   schema: Optional[ResourceSchema] = None) -> List[Dict[str, Any]]:
    """Stable sort on ``sort_by``; resources without a value always come last."""
    path = parse_path(sort_by)
    case_exact = True
    if schema is not None:
        case_exact = schema.is_case_exact(path.attribute, path.sub_attribute, path.uri)
    descending = order == SortOrder.DESCENDING

    def compare(a, b) -> int:
        if a is None or b is None:
            return (a is None) - (b is None)
        result = compare_values(a, b, case_exact)
        if result is None:
            rank_a = _TYPE_RANK.get(type(a), 3)
            rank_b = _TYPE_RANK.get(type(b), 3)
            result = (rank_a > rank_b) - (rank_a < rank_b)
            if result == 0 and a != b:
                result = (str(a) > str(b)) - (str(a) < str(b))
        return -result if descending else result

    keyed = [(sort_value(r, path), r) for r in resources]
    keyed.sort(key=functools.cmp_to_key(lambda x, y: compare(x[0], y[0])))
    return [r for _, r in keyed]


# -- Projection -------------------------------------------------------------

def project(resource: Dict[str, Any], attributes: Optional[List[str]] = None,
            excluded: Optional[List[str]] = None,
            schema: Optional[ResourceSchema] = None) -> Dict[str, Any]:
    """Return a copy of ``resource`` restricted per RFC 7644 Section 3.4.2.5.

    ``id``, ``schemas`` and ``returned: always`` attributes are always kept;
    ``returned: never`` attributes (``password``) are always dropped.
    """
    if schema is None:
        schema = schema_for_resource(resource)

    if attributes:
        result: Dict[str, Any] = {}
        required = ["schemas", "id"]
        if schema is not None:
            required += [name for uri, name in schema.attributes_returned("always") if uri is None]
        for name in required:
            key = find_key(resource, name)
            if key is not None:
                result[key] = copy.deepcopy(resource[key])
        for text in attributes:
            _copy_path(resource, result, parse_path(text))
    else:
        result = copy.deepcopy(resource)
        for text in excluded or []:
            path = parse_path(text)
            if _always_returned(path, schema):
                continue
            _drop_path(result, path)

    if schema is not None:
        for uri, name in schema.attributes_returned("never"):
            _drop_path(result, AttributePath(name, None, uri))
    return result


def _always_returned(path: AttributePath, schema: Optional[ResourceSchema]) -> bool:
    if path.attribute is None:
        return False
    if path.sub_attribute is None and path.uri is None and path.attribute.lower() in ("id", "schemas"):
        return True
    if schema is None:
        return False
    return schema.returned(path.attribute, path.sub_attribute, path.uri) == "always"


def _source_container(resource: Dict[str, Any], path: AttributePath):
    """``(container, extension_key)`` holding the path's attribute, or ``(None, None)``."""
    if path.uri is None or is_core_uri(resource, path.uri):
        return resource, None
    key = find_key(resource, path.uri)
    if key is None or not isinstance(resource[key], dict):
        return None, None
    return resource[key], key


def _copy_path(source: Dict[str, Any], target: Dict[str, Any], path: AttributePath) -> None:
    container, ext_key = _source_container(source, path)
    if container is None:
        return
    if path.attribute is None:
        if ext_key is not None:
            target[ext_key] = copy.deepcopy(container)
        return
    key = find_key(container, path.attribute)
    if key is None:
        return
    value = container[key]
    out = target
    if ext_key is not None:
        out = target.setdefault(ext_key, {})

    if path.sub_attribute is None:
        out[key] = copy.deepcopy(value)
        return
    if isinstance(value, list):
        existing = out.get(key)
        if not isinstance(existing, list) or len(existing) != len(value):
            existing = [{} for _ in value]
        for element, projected in zip(value, existing):
            if isinstance(element, dict) and isinstance(projected, dict):
                sub_key = find_key(element, path.sub_attribute)
                if sub_key is not None:
                    projected[sub_key] = copy.deepcopy(element[sub_key])
        out[key] = existing
    elif isinstance(value, dict):
        sub_key = find_key(value, path.sub_attribute)
        if sub_key is not None:
            projected = out.setdefault(key, {})
            projected[sub_key] = copy.deepcopy(value[sub_key])


def _drop_path(resource: Dict[str, Any], path: AttributePath) -> None:
    container, ext_key = _source_container(resource, path)
    if container is None:
        return
    if path.attribute is None:
        if ext_key is not None:
            del resource[ext_key]
        return
    if path.sub_attribute is None:
        del_attr(container, path.attribute)
        return
    value = get_attr(container, path.attribute)
    for element in value if isinstance(value, list) else [value]:
        if isinstance(element, dict):
            del_attr(element, path.sub_attribute)
