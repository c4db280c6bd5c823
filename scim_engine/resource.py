"""Resource model helpers.

A SCIM resource is a plain ``dict`` decoded from JSON.  Attribute names are
case-insensitive (RFC 7643 Section 2.1), so every lookup goes through the
helpers here, which match names case-insensitively while keeping whatever
casing the resource already uses.
"""

import copy
from typing import Any, Dict, List, Optional

Resource = Dict[str, Any]


def find_key(container: Dict[str, Any], name: str) -> Optional[str]:
    """Return the actual key in ``container`` matching ``name`` case-insensitively."""
    if name in container:
        return name
    lower = name.lower()
    for key in container:
        if key.lower() == lower:
            return key
    return None


def get_attr(container: Dict[str, Any], name: str, default: Any = None) -> Any:
    key = find_key(container, name)
    if key is None:
        return default
    return container[key]


def set_attr(container: Dict[str, Any], name: str, value: Any) -> None:
    """Set ``name`` to ``value``, reusing the existing key's casing on overwrite."""
    key = find_key(container, name)
    container[key if key is not None else name] = value


def del_attr(container: Dict[str, Any], name: str) -> bool:
    """Delete ``name`` if present.  Returns whether anything was removed."""
    key = find_key(container, name)
    if key is None:
        return False
    del container[key]
    return True


def has_value(value: Any) -> bool:
    """RFC 7643 Section 2.5: null, empty strings, empty lists and empty
    complex values are all equivalent to "no value"."""
    if value is None:
        return False
    if isinstance(value, (str, list, dict)) and len(value) == 0:
        return False
    return True


def merge_into(target: Dict[str, Any], values: Dict[str, Any]) -> None:
    """Shallow case-insensitive merge of ``values`` into ``target``."""
    for name, value in values.items():
        set_attr(target, name, value)


def clone(resource: Resource) -> Resource:
    return copy.deepcopy(resource)


def resource_id(resource: Resource) -> Optional[str]:
    return get_attr(resource, "id")


def resource_version(resource: Resource) -> Optional[str]:
    meta = get_attr(resource, "meta")
    if isinstance(meta, dict):
        return get_attr(meta, "version")
    return None


def ensure_single_primary(resource: Resource) -> Resource:
    """Leave at most one ``primary: true`` element in each multi-valued attribute.

    When several elements claim to be primary the last one wins, matching
    what a sequence of PATCH ``add`` operations would leave behind.  The
    resource is modified in place and returned.
    """
    for value in resource.values():
        if not isinstance(value, list):
            continue
        seen_primary = False
        for item in reversed(value):
            if isinstance(item, dict) and get_attr(item, "primary") is True:
                if seen_primary:
                    set_attr(item, "primary", False)
                else:
                    seen_primary = True
    return resource


def primary_or_first(values: List[Any]) -> Any:
    """Pick the representative element of a multi-valued attribute."""
    for item in values:
        if isinstance(item, dict) and get_attr(item, "primary") is True:
            return item
    return values[0] if values else None
