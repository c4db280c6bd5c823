"""Attribute path parsing and resolution (RFC 7644 Section 3.10).

A path is ``[schemaUri ":"] attrName ["[" valueFilter "]"] ["." subAttr]``.
Resolution turns a path into the list of slots in a resource that
currently hold a value for it.  It never modifies the resource; the patch
engine uses the returned :class:`Location` objects to do that.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .errors import InvalidFilter, InvalidPath, NoSuchAttribute
from .filters import AttributePath, FilterEvaluator, FilterParser, is_core_uri
from .resource import del_attr, find_key, get_attr, set_attr
from .schemas import ResourceSchema, get_schema

__all__ = ["AttributePath", "Location", "parse_path", "resolve", "resolve_values"]


def parse_path(text: str) -> AttributePath:
    """Parse a PATCH/sort/projection attribute path.

    Raises:
        InvalidPath: for malformed input, including a malformed value filter.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidPath("Empty attribute path")
    try:
        return FilterParser(text.strip()).parse_path()
    except InvalidFilter as exc:
        raise InvalidPath(exc.detail, text) from exc


@dataclass
class Location:
    """A single slot in a resource: a key of a ``dict`` or an index of a ``list``."""

    container: Union[Dict[str, Any], List[Any]]
    key: Union[str, int]

    def get(self) -> Any:
        if isinstance(self.container, list):
            return self.container[self.key]
        return get_attr(self.container, self.key)

    def set(self, value: Any) -> None:
        if isinstance(self.container, list):
            self.container[self.key] = value
        else:
            set_attr(self.container, self.key, value)

    def delete(self) -> None:
        if isinstance(self.container, list):
            del self.container[self.key]
        else:
            del_attr(self.container, self.key)


def check_uri(resource: Dict[str, Any], uri: str, schema: Optional[ResourceSchema] = None) -> None:
    """Raise :class:`InvalidPath` unless ``uri`` is a schema this resource may carry."""
    if schema is not None and schema.knows_uri(uri):
        return
    if get_schema(uri) is not None:
        return
    declared = [u.lower() for u in resource.get("schemas") or [] if isinstance(u, str)]
    if uri.lower() in declared:
        return
    raise InvalidPath("Unknown schema URI", uri)


def container_for(resource: Dict[str, Any], path: AttributePath,
                  schema: Optional[ResourceSchema] = None) -> Optional[Dict[str, Any]]:
    """Return the object holding ``path.attribute``: the resource itself for
    core attributes, or the extension object for extension attributes.

    ``None`` means the extension object does not exist yet.
    """
    if path.uri is None:
        return resource
    check_uri(resource, path.uri, schema)
    if schema is not None and schema.urn.lower() == path.uri.lower():
        return resource
    extension = get_attr(resource, path.uri)
    if isinstance(extension, dict):
        return extension
    if schema is None and is_core_uri(resource, path.uri):
        return resource
    return None


def resolve(resource: Dict[str, Any], path: Union[AttributePath, str],
            schema: Optional[ResourceSchema] = None, required: bool = False) -> List[Location]:
    """Find every slot in ``resource`` currently holding a value for ``path``.

    - a value filter yields one location per matching element (or per
      matching element's sub-attribute when one follows the filter)
    - a sub-attribute of a multi-valued attribute yields one location per
      element that has it
    - an unresolved path yields ``[]``, or raises :class:`NoSuchAttribute`
      when ``required`` is set
    """
    if isinstance(path, str):
        path = parse_path(path)
    locations = _resolve(resource, path, schema)
    if required and not locations:
        raise NoSuchAttribute(str(path))
    return locations


def _resolve(resource: Dict[str, Any], path: AttributePath,
             schema: Optional[ResourceSchema]) -> List[Location]:
    container = container_for(resource, path, schema)
    if container is None:
        return []
    if path.attribute is None:
        key = find_key(resource, path.uri)
        return [Location(resource, key)] if key is not None else []

    key = find_key(container, path.attribute)
    if key is None or container[key] is None:
        return []
    value = container[key]

    if path.value_filter is not None:
        elements = value if isinstance(value, list) else []
        evaluator = FilterEvaluator(schema, path.attribute, path.uri)
        found = []
        for index, element in enumerate(elements):
            if not isinstance(element, dict) or not evaluator.evaluate(element, path.value_filter):
                continue
            if path.sub_attribute is None:
                found.append(Location(elements, index))
            elif get_attr(element, path.sub_attribute) is not None:
                found.append(Location(element, path.sub_attribute))
        return found

    if path.sub_attribute is not None:
        items = value if isinstance(value, list) else [value]
        return [
            Location(item, path.sub_attribute)
            for item in items
            if isinstance(item, dict) and get_attr(item, path.sub_attribute) is not None
        ]

    return [Location(container, key)]


def resolve_values(resource: Dict[str, Any], path: Union[AttributePath, str],
                   schema: Optional[ResourceSchema] = None) -> List[Any]:
    """Values at ``path``, flattened one level, absent values dropped."""
    values = []
    for location in resolve(resource, path, schema):
        value = location.get()
        if isinstance(value, list):
            values.extend(v for v in value if v is not None)
        elif value is not None:
            values.append(value)
    return values
