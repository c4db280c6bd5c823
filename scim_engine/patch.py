"""SCIM PATCH operation handler (RFC 7644 Section 3.5.2).

Identity providers use PATCH to make incremental changes instead of
replacing the whole resource with PUT, for example:

  - Deactivating a user: ``replace`` ``active`` with ``false``
  - Adding group members: ``add`` to ``members``
  - Removing one member: ``remove`` ``members[value eq "2819c223"]``

Operations are applied in order to a deep copy of the resource.  If any
operation fails the exception propagates and the caller's resource is left
untouched, so a PATCH request either applies completely or not at all.
This module does not persist anything; see :mod:`scim_engine.service`.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from .errors import InvalidPath, MutateImmutable, NoTarget, PatchInvalidValue
from .filters import AttributePath
from .paths import Location, container_for, parse_path, resolve
from .resource import clone, del_attr, find_key, get_attr, merge_into, set_attr
from .schemas import PATCH_OP_URN, ResourceSchema, get_schema, schema_for_resource

logger = logging.getLogger(__name__)

_READ_ONLY = ("readOnly", "immutable")


class PatchOp(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"

    @classmethod
    def parse(cls, value: Any) -> "PatchOp":
        """Case-insensitive lookup; Entra ID sends ``"Replace"`` and ``"Add"``."""
        if isinstance(value, str):
            for member in cls:
                if member.value == value.lower():
                    return member
        raise ValueError(value)


@dataclass
class PatchOperation:
    """One entry of a PatchOp ``Operations`` array."""

    op: PatchOp
    path: Optional[str] = None
    value: Any = None

    @classmethod
    def from_dict(cls, data: Any, index: int = 0) -> "PatchOperation":
        """Build an operation from its JSON form, validating it.

        Raises:
            PatchInvalidValue: naming the offending ``Operations`` index.
        """
        where = f"Operations[{index}]"
        if not isinstance(data, dict):
            raise PatchInvalidValue(f"{where}: operation must be an object")

        op_key = find_key(data, "op")
        if op_key is None:
            raise PatchInvalidValue(f"{where}: missing required field 'op'")
        try:
            op = PatchOp.parse(data[op_key])
        except ValueError:
            raise PatchInvalidValue(
                f"{where}: invalid 'op' value {data[op_key]!r}. "
                "Must be one of: 'add', 'remove', 'replace'"
            ) from None

        path = get_attr(data, "path")
        if path is not None and not isinstance(path, str):
            raise PatchInvalidValue(f"{where}: 'path' must be a string")
        if op == PatchOp.REMOVE and not path:
            raise PatchInvalidValue(f"{where}: 'remove' operation requires 'path'")
        if op in (PatchOp.ADD, PatchOp.REPLACE) and find_key(data, "value") is None:
            raise PatchInvalidValue(f"{where}: '{op.value}' operation requires 'value'")

        return cls(op, path or None, get_attr(data, "value"))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"op": self.op.value}
        if self.path is not None:
            data["path"] = self.path
        if self.value is not None:
            data["value"] = self.value
        return data


def parse_patch_request(body: Any) -> List[PatchOperation]:
    """Validate a PatchOp request body and return its operations."""
    if not isinstance(body, dict):
        raise PatchInvalidValue("PATCH body must be a JSON object")
    schemas = body.get("schemas")
    if not isinstance(schemas, list) or PATCH_OP_URN not in schemas:
        raise PatchInvalidValue(f"PATCH request must include schema: '{PATCH_OP_URN}'")
    operations = get_attr(body, "Operations")
    if not isinstance(operations, list) or not operations:
        raise PatchInvalidValue("'Operations' must be a non-empty array")
    return [PatchOperation.from_dict(op, i) for i, op in enumerate(operations)]


def apply_patch(resource: Dict[str, Any],
                operations: Sequence[Union[PatchOperation, Dict[str, Any]]],
                schema: Optional[ResourceSchema] = None) -> Dict[str, Any]:
    """Apply ``operations`` in order and return the patched copy.

    Args:
        resource:    Resource to patch; never modified
        operations:  :class:`PatchOperation` objects or their JSON dicts
        schema:      Attribute metadata; looked up from ``resource["schemas"]``
                     when omitted

    Raises:
        InvalidPath, NoTarget, MutateImmutable, PatchInvalidValue
    """
    if schema is None:
        schema = schema_for_resource(resource)
    result = clone(resource)
    applier = PatchApplier(result, schema)
    for index, operation in enumerate(operations):
        if not isinstance(operation, PatchOperation):
            operation = PatchOperation.from_dict(operation, index)
        logger.debug("Applying PATCH %s %s", operation.op.value, operation.path or "<root>")
        applier.apply(operation)
    return result


class PatchApplier:
    """Applies operations in place to ``resource``, which should be a copy."""

    def __init__(self, resource: Dict[str, Any], schema: Optional[ResourceSchema] = None):
        self.resource = resource
        self.schema = schema

    def apply(self, operation: PatchOperation) -> None:
        if operation.path is None:
            if operation.op == PatchOp.REMOVE:
                raise PatchInvalidValue("'remove' operation requires 'path'")
            self._merge_root(operation.op, operation.value)
            return

        path = parse_path(operation.path)
        self._check_mutable(path)
        if operation.op == PatchOp.ADD:
            self._add(path, operation.value)
        elif operation.op == PatchOp.REPLACE:
            self._replace(path, operation.value)
        else:
            self._remove(path, operation.value)

    # -- Schema checks -------------------------------------------------------

    def _check_mutable(self, path: AttributePath) -> None:
        if self.schema is None or path.attribute is None:
            return
        if self.schema.mutability(path.attribute, uri=path.uri) in _READ_ONLY:
            raise MutateImmutable(f"Attribute {path.attribute!r} is not modifiable")
        if path.sub_attribute and self.schema.mutability(
                path.attribute, path.sub_attribute, path.uri) in _READ_ONLY:
            raise MutateImmutable(
                f"Attribute {path.attribute}.{path.sub_attribute} is not modifiable")

    def _is_multi_valued(self, path: AttributePath, current: Any, value: Any) -> bool:
        if isinstance(current, list):
            return True
        if self.schema is not None:
            known = self.schema.is_multi_valued(path.attribute, path.uri)
            if known is not None:
                return known
        return isinstance(value, list)

    def _coerce(self, attr: str, sub: Optional[str], uri: Optional[str], value: Any) -> Any:
        """Check a single value against the schema type of ``attr[.sub]``."""
        if self.schema is None or value is None:
            return value
        definition = self.schema.attribute(attr, sub, uri)
        if definition is None:
            return value
        name = f"{attr}.{sub}" if sub else attr
        kind = definition.get("type")
        if kind == "boolean":
            if isinstance(value, str) and value.lower() in ("true", "false"):
                return value.lower() == "true"
            if not isinstance(value, bool):
                raise PatchInvalidValue(f"Invalid value for {name!r}: expected boolean")
        elif kind in ("string", "reference", "dateTime", "binary"):
            if not isinstance(value, str):
                raise PatchInvalidValue(f"Invalid value for {name!r}: expected string")
            if name.lower() == "username" and not value:
                raise PatchInvalidValue("Invalid value for 'userName': cannot be empty")
        elif kind == "complex" and not isinstance(value, dict):
            raise PatchInvalidValue(f"Invalid value for {name!r}: expected complex object")
        return value

    # -- Containers ----------------------------------------------------------

    def _container(self, path: AttributePath, create: bool) -> Optional[Dict[str, Any]]:
        container = container_for(self.resource, path, self.schema)
        if container is None and create:
            container = {}
            set_attr(self.resource, path.uri, container)
            self._declare_schema(path.uri)
        return container

    def _declare_schema(self, uri: str) -> None:
        schemas = self.resource.setdefault("schemas", [])
        if uri.lower() not in (u.lower() for u in schemas):
            schemas.append(uri)

    def _matching(self, path: AttributePath) -> List[Location]:
        """Locations of the elements the value filter selects."""
        element_path = AttributePath(path.attribute, None, path.uri, path.value_filter)
        return resolve(self.resource, element_path, self.schema)

    def _list_for_filter(self, container: Dict[str, Any], path: AttributePath) -> Optional[list]:
        current = get_attr(container, path.attribute)
        if current is not None and not isinstance(current, list):
            raise InvalidPath("Value filter applied to a single-valued attribute", str(path))
        return current

    # -- Path-less add / replace ---------------------------------------------

    def _merge_root(self, op: PatchOp, value: Any) -> None:
        if not isinstance(value, dict):
            raise PatchInvalidValue(f"'{op.value}' without 'path' requires an object value")
        for key, item in value.items():
            if key.lower() == "schemas":
                if item is None:
                    continue
                if not isinstance(item, list) or not all(isinstance(u, str) for u in item):
                    raise PatchInvalidValue("'schemas' must be an array of URIs")
                for uri in item:
                    self._declare_schema(uri)
                continue
            if ":" in key and isinstance(item, dict):
                self._merge_extension(key, item)
                continue
            path = AttributePath(key)
            if self.schema is not None and self.schema.mutability(key) in _READ_ONLY:
                # Clients often echo id and meta back unchanged
                if get_attr(self.resource, key) == item:
                    continue
                raise MutateImmutable(f"Attribute {key!r} is not modifiable")
            if op == PatchOp.ADD and isinstance(item, list) and self._is_multi_valued(
                    path, get_attr(self.resource, key), item):
                self._append(self.resource, key, item)
            else:
                set_attr(self.resource, key, self._coerce(key, None, None, item))

    def _merge_extension(self, uri: str, values: Dict[str, Any]) -> None:
        if self.schema is not None and not self.schema.knows_uri(uri) and get_schema(uri) is None:
            raise InvalidPath("Unknown schema URI", uri)
        path = AttributePath(None, None, uri)
        container = self._container(path, create=True)
        if container is self.resource:
            merge_into(self.resource, values)
            return
        for name, item in values.items():
            set_attr(container, name, self._coerce(name, None, uri, item))

    # -- add -----------------------------------------------------------------

    def _add(self, path: AttributePath, value: Any) -> None:
        container = self._container(path, create=True)
        if path.attribute is None:
            if not isinstance(value, dict):
                raise PatchInvalidValue(f"Value for {path.uri!r} must be an object")
            self._merge_extension(path.uri, value)
            return

        if path.value_filter is not None:
            current = self._list_for_filter(container, path)
            matches = self._matching(path) if current else []
            if path.sub_attribute is not None:
                if not matches:
                    raise NoTarget(f"No values match {path}")
                value = self._coerce(path.attribute, path.sub_attribute, path.uri, value)
                for location in matches:
                    set_attr(location.get(), path.sub_attribute, value)
            elif not matches:
                self._append(container, path.attribute, value)
            return

        current = get_attr(container, path.attribute)
        if path.sub_attribute is not None:
            self._set_sub_attribute(container, path, current, value, merge=True)
            return

        if self._is_multi_valued(path, current, value):
            self._append(container, path.attribute, value)
        elif isinstance(current, dict) and isinstance(value, dict):
            merge_into(current, value)
        else:
            set_attr(container, path.attribute,
                     self._coerce(path.attribute, None, path.uri, value))

    def _append(self, container: Dict[str, Any], name: str, value: Any) -> None:
        """Add value(s) to a multi-valued attribute, skipping exact duplicates."""
        current = get_attr(container, name)
        items = list(current) if isinstance(current, list) else []
        for item in value if isinstance(value, list) else [value]:
            if item not in items:
                items.append(item)
        set_attr(container, name, items)

    def _set_sub_attribute(self, container: Dict[str, Any], path: AttributePath,
                           current: Any, value: Any, merge: bool) -> None:
        sub = path.sub_attribute
        value = self._coerce(path.attribute, sub, path.uri, value)
        if isinstance(current, list):
            for element in current:
                if isinstance(element, dict):
                    set_attr(element, sub, value)
        elif isinstance(current, dict):
            existing = get_attr(current, sub)
            if merge and isinstance(existing, dict) and isinstance(value, dict):
                merge_into(existing, value)
            else:
                set_attr(current, sub, value)
        elif current is None:
            set_attr(container, path.attribute, {sub: value})
        else:
            raise InvalidPath("Sub-attribute of a simple attribute", str(path))

    # -- replace -------------------------------------------------------------

    def _replace(self, path: AttributePath, value: Any) -> None:
        container = self._container(path, create=True)
        if path.attribute is None:
            if not isinstance(value, dict):
                raise PatchInvalidValue(f"Value for {path.uri!r} must be an object")
            self._merge_extension(path.uri, value)
            return

        if path.value_filter is not None:
            current = self._list_for_filter(container, path)
            matches = self._matching(path) if current else []
            if not matches:
                raise NoTarget(f"No values match {path}")
            if path.sub_attribute is not None:
                value = self._coerce(path.attribute, path.sub_attribute, path.uri, value)
                for location in matches:
                    set_attr(location.get(), path.sub_attribute, value)
                return
            for location in matches:
                element = location.get()
                if isinstance(element, dict) and isinstance(value, dict):
                    merge_into(element, value)
                else:
                    location.set(value)
            return

        current = get_attr(container, path.attribute)
        if path.sub_attribute is not None:
            self._set_sub_attribute(container, path, current, value, merge=False)
            return

        if self._is_multi_valued(path, current, value):
            set_attr(container, path.attribute, value if isinstance(value, list) else [value])
        elif isinstance(current, dict) and isinstance(value, dict):
            merge_into(current, value)
        else:
            set_attr(container, path.attribute,
                     self._coerce(path.attribute, None, path.uri, value))

    # -- remove --------------------------------------------------------------

    def _remove(self, path: AttributePath, value: Any) -> None:
        container = self._container(path, create=False)
        if container is None:
            return
        if path.attribute is None:
            del_attr(self.resource, path.uri)
            schemas = self.resource.get("schemas") or []
            self.resource["schemas"] = [u for u in schemas if u.lower() != path.uri.lower()]
            return

        current = get_attr(container, path.attribute)
        if current is None:
            return

        if path.value_filter is not None:
            self._list_for_filter(container, path)
            matches = self._matching(path)
            if path.sub_attribute is not None:
                for location in matches:
                    del_attr(location.get(), path.sub_attribute)
                return
            for location in sorted(matches, key=lambda loc: loc.key, reverse=True):
                location.delete()
            if matches and not current:
                del_attr(container, path.attribute)
            return

        if path.sub_attribute is not None:
            elements = current if isinstance(current, list) else [current]
            for element in elements:
                if isinstance(element, dict):
                    del_attr(element, path.sub_attribute)
            if isinstance(current, dict) and not current:
                del_attr(container, path.attribute)
            return

        if value is not None and isinstance(current, list):
            targets = value if isinstance(value, list) else [value]
            remaining = [item for item in current
                         if not any(_partial_match(item, target) for target in targets)]
            if remaining:
                set_attr(container, path.attribute, remaining)
            else:
                del_attr(container, path.attribute)
            return

        del_attr(container, path.attribute)


def _partial_match(item: Any, target: Any) -> bool:
    """True if every key of ``target`` equals the same key of ``item``.

    Group members are routinely removed with ``{"value": "<id>"}`` while the
    stored member also carries ``display`` and ``$ref``.
    """
    if isinstance(item, dict) and isinstance(target, dict):
        return all(get_attr(item, key) == expected for key, expected in target.items())
    return item == target
