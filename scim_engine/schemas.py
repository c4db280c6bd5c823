"""SCIM 2.0 core and enterprise extension schemas (RFC 7643), and the
attribute metadata lookups the engine needs from them.

The engine only consults a handful of characteristics: ``multiValued``,
``caseExact``, ``mutability``, ``returned`` and ``type``.  Attributes the
schema does not describe are treated as single-valued, case-sensitive,
``readWrite`` and ``returned: default``.
"""

from typing import Any, Dict, List, Optional, Tuple

USER_URN = "urn:ietf:params:scim:schemas:core:2.0:User"
GROUP_URN = "urn:ietf:params:scim:schemas:core:2.0:Group"
ENTERPRISE_USER_URN = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
LIST_RESPONSE_URN = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
PATCH_OP_URN = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
BULK_REQUEST_URN = "urn:ietf:params:scim:api:messages:2.0:BulkRequest"
BULK_RESPONSE_URN = "urn:ietf:params:scim:api:messages:2.0:BulkResponse"


def _attr(name: str, type_: str = "string", multi: bool = False,
          mutability: str = "readWrite", returned: str = "default",
          case_exact: Optional[bool] = None, sub: Optional[list] = None) -> Dict[str, Any]:
    attr: Dict[str, Any] = {
        "name": name,
        "type": type_,
        "multiValued": multi,
        "mutability": mutability,
        "returned": returned,
    }
    if case_exact is not None:
        attr["caseExact"] = case_exact
    if sub is not None:
        attr["subAttributes"] = sub
    return attr


def _multi_valued(name: str, mutability: str = "readWrite",
                  value_case_exact: Optional[bool] = None) -> Dict[str, Any]:
    """Standard ``value``/``display``/``type``/``primary`` multi-valued attribute."""
    return _attr(name, "complex", multi=True, mutability=mutability, sub=[
        _attr("value", case_exact=value_case_exact, mutability=mutability),
        _attr("display", mutability=mutability),
        _attr("type", case_exact=False, mutability=mutability),
        _attr("primary", "boolean", mutability=mutability),
    ])


# Common attributes (RFC 7643 Section 3.1), present on every resource type
_COMMON_ATTRIBUTES = [
    _attr("id", mutability="readOnly", returned="always", case_exact=True),
    _attr("externalId", case_exact=True),
    _attr("meta", "complex", mutability="readOnly", sub=[
        _attr("resourceType", mutability="readOnly", case_exact=True),
        _attr("created", "dateTime", mutability="readOnly"),
        _attr("lastModified", "dateTime", mutability="readOnly"),
        _attr("location", "reference", mutability="readOnly", case_exact=True),
        _attr("version", mutability="readOnly", case_exact=True),
    ]),
]

CORE_USER_SCHEMA = {
    "id": USER_URN,
    "name": "User",
    "endpoint": "Users",
    "attributes": _COMMON_ATTRIBUTES + [
        _attr("userName", case_exact=False),
        _attr("name", "complex", sub=[
            _attr(n) for n in ("formatted", "familyName", "givenName", "middleName",
                               "honorificPrefix", "honorificSuffix")
        ]),
        _attr("displayName", case_exact=False),
        _attr("nickName"),
        _attr("profileUrl", "reference"),
        _attr("title"),
        _attr("userType", case_exact=False),
        _attr("preferredLanguage"),
        _attr("locale"),
        _attr("timezone"),
        _attr("active", "boolean"),
        _attr("password", mutability="writeOnly", returned="never", case_exact=True),
        _multi_valued("emails", value_case_exact=False),
        _multi_valued("phoneNumbers"),
        _multi_valued("ims"),
        _multi_valued("photos"),
        _attr("addresses", "complex", multi=True, sub=[
            _attr(n) for n in ("formatted", "streetAddress", "locality", "region",
                               "postalCode", "country")
        ] + [_attr("type", case_exact=False), _attr("primary", "boolean")]),
        _multi_valued("groups", mutability="readOnly"),
        _multi_valued("entitlements"),
        _multi_valued("roles"),
        _multi_valued("x509Certificates"),
    ],
}

CORE_GROUP_SCHEMA = {
    "id": GROUP_URN,
    "name": "Group",
    "endpoint": "Groups",
    "attributes": _COMMON_ATTRIBUTES + [
        _attr("displayName", case_exact=False),
        _attr("members", "complex", multi=True, sub=[
            _attr("value", mutability="immutable", case_exact=True),
            _attr("$ref", "reference", mutability="immutable"),
            _attr("display", mutability="readOnly"),
            _attr("type", mutability="immutable", case_exact=False),
        ]),
    ],
}

ENTERPRISE_USER_SCHEMA = {
    "id": ENTERPRISE_USER_URN,
    "name": "EnterpriseUser",
    "attributes": [
        _attr("employeeNumber"),
        _attr("costCenter"),
        _attr("organization"),
        _attr("division"),
        _attr("department"),
        _attr("manager", "complex", sub=[
            _attr("value"),
            _attr("$ref", "reference"),
            _attr("displayName", mutability="readOnly"),
        ]),
    ],
}

SCHEMAS = {
    USER_URN: CORE_USER_SCHEMA,
    GROUP_URN: CORE_GROUP_SCHEMA,
    ENTERPRISE_USER_URN: ENTERPRISE_USER_SCHEMA,
}


def get_schema(urn: str):
    """Get schema definition by URN (case-insensitive)."""
    lower = urn.lower()
    for key, schema in SCHEMAS.items():
        if key.lower() == lower:
            return schema
    return None


def _find(attrs: List[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
    lower = name.lower()
    for attr in attrs:
        if attr["name"].lower() == lower:
            return attr
    return None


class ResourceSchema:
    """Attribute metadata for one resource type: a core schema plus extensions.

    Args:
        core:        Core schema definition (e.g. ``CORE_USER_SCHEMA``)
        extensions:  Extension schema definitions allowed on this resource type
    """

    def __init__(self, core: Dict[str, Any], extensions: Optional[List[Dict[str, Any]]] = None):
        self.core = core
        self.extensions = list(extensions or [])

    @property
    def urn(self) -> str:
        return self.core["id"]

    @property
    def name(self) -> str:
        return self.core["name"]

    @property
    def extension_urns(self) -> List[str]:
        return [ext["id"] for ext in self.extensions]

    def _schema_for(self, uri: Optional[str]) -> Optional[Dict[str, Any]]:
        if uri is None or uri.lower() == self.urn.lower():
            return self.core
        for ext in self.extensions:
            if ext["id"].lower() == uri.lower():
                return ext
        return None

    def knows_uri(self, uri: str) -> bool:
        """True if ``uri`` is this type's core schema or one of its extensions."""
        return self._schema_for(uri) is not None

    def is_extension(self, uri: str) -> bool:
        lower = uri.lower()
        return any(urn.lower() == lower for urn in self.extension_urns)

    def attribute(self, name: str, sub: Optional[str] = None,
                  uri: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Look up an attribute (or sub-attribute) definition.

        Returns ``None`` when the schema does not describe it.
        """
        schema = self._schema_for(uri)
        if schema is None:
            return None
        attr = _find(schema["attributes"], name)
        if attr is None or sub is None:
            return attr
        return _find(attr.get("subAttributes", []), sub)

    # -- Characteristics -----------------------------------------------------

    def is_case_exact(self, name: str, sub: Optional[str] = None,
                      uri: Optional[str] = None) -> bool:
        """Unknown attributes and attributes without ``caseExact`` compare exactly."""
        attr = self.attribute(name, sub, uri)
        if attr is None:
            return True
        return attr.get("caseExact", True)

    def is_multi_valued(self, name: str, uri: Optional[str] = None) -> Optional[bool]:
        """``None`` means the schema does not know the attribute."""
        attr = self.attribute(name, uri=uri)
        if attr is None:
            return None
        return bool(attr.get("multiValued", False))

    def mutability(self, name: str, sub: Optional[str] = None,
                   uri: Optional[str] = None) -> str:
        attr = self.attribute(name, sub, uri)
        if attr is None:
            return "readWrite"
        return attr.get("mutability", "readWrite")

    def returned(self, name: str, sub: Optional[str] = None,
                 uri: Optional[str] = None) -> str:
        attr = self.attribute(name, sub, uri)
        if attr is None:
            return "default"
        return attr.get("returned", "default")

    def attributes_returned(self, returned: str) -> List[Tuple[Optional[str], str]]:
        """List ``(uri, name)`` pairs of top-level attributes with the given
        ``returned`` characteristic.  ``uri`` is ``None`` for core attributes."""
        found = [(None, a["name"]) for a in self.core["attributes"] if a.get("returned") == returned]
        for ext in self.extensions:
            found.extend((ext["id"], a["name"]) for a in ext["attributes"]
                         if a.get("returned") == returned)
        return found


USER = ResourceSchema(CORE_USER_SCHEMA, [ENTERPRISE_USER_SCHEMA])
GROUP = ResourceSchema(CORE_GROUP_SCHEMA)

RESOURCE_SCHEMAS = {
    "User": USER,
    "Group": GROUP,
}


def schema_for_resource(resource: Dict[str, Any]) -> Optional[ResourceSchema]:
    """Pick the :class:`ResourceSchema` whose core URN is listed in ``resource["schemas"]``."""
    urns = [u.lower() for u in resource.get("schemas") or [] if isinstance(u, str)]
    for schema in RESOURCE_SCHEMAS.values():
        if schema.urn.lower() in urns:
            return schema
    return None
