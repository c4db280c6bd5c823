"""Payload builders shared by the tests.

``bjensen()`` is the full User example from RFC 7643 Section 8.2 (trimmed);
the ``make_*`` helpers build minimal resources with unique values.
"""

import uuid
from typing import Any, Dict, List, Optional

from scim_engine.schemas import (
    BULK_REQUEST_URN,
    ENTERPRISE_USER_URN,
    GROUP_URN,
    PATCH_OP_URN,
    USER_URN,
)


def _unique_suffix() -> str:
    return uuid.uuid4().hex[:8]


def bjensen() -> Dict[str, Any]:
    return {
        "schemas": [USER_URN, ENTERPRISE_USER_URN],
        "id": "2819c223-7f76-453a-919d-413861904646",
        "externalId": "701984",
        "userName": "bjensen@example.com",
        "name": {
            "formatted": "Ms. Barbara J Jensen, III",
            "familyName": "Jensen",
            "givenName": "Barbara",
        },
        "displayName": "Babs Jensen",
        "title": "Tour Guide",
        "active": True,
        "emails": [
            {"value": "bjensen@example.com", "type": "work", "primary": True},
            {"value": "babs@jensen.org", "type": "home"},
        ],
        "phoneNumbers": [
            {"value": "555-555-5555", "type": "work"},
            {"value": "555-555-4444", "type": "mobile"},
        ],
        "groups": [
            {"value": "e9e30dba-f08f-4109-8486-d5c6a331660a", "display": "Tour Guides"},
        ],
        ENTERPRISE_USER_URN: {
            "employeeNumber": "701984",
            "costCenter": "4130",
            "department": "Tour Operations",
            "manager": {"value": "26118915-6090-4610-87e4-49d8ca9f808d", "displayName": "John Smith"},
        },
        "meta": {
            "resourceType": "User",
            "created": "2010-01-23T04:56:22Z",
            "lastModified": "2011-05-13T04:42:34Z",
            "version": 'W/"3694e05e9dff591"',
            "location": "https://example.com/v2/Users/2819c223-7f76-453a-919d-413861904646",
        },
    }


def make_user(user_name: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    suffix = _unique_suffix()
    payload: Dict[str, Any] = {
        "schemas": [USER_URN],
        "userName": user_name or f"user-{suffix}@example.com",
        "active": True,
    }
    payload.update(extra)
    return payload


def make_group(display_name: Optional[str] = None, members: Optional[List[str]] = None,
               **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "schemas": [GROUP_URN],
        "displayName": display_name or f"group-{_unique_suffix()}",
    }
    if members is not None:
        payload["members"] = [{"value": m} for m in members]
    payload.update(extra)
    return payload


def make_patch(*operations: Dict[str, Any]) -> Dict[str, Any]:
    return {"schemas": [PATCH_OP_URN], "Operations": list(operations)}


def make_bulk(*operations: Dict[str, Any], fail_on_errors: Optional[int] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"schemas": [BULK_REQUEST_URN], "Operations": list(operations)}
    if fail_on_errors is not None:
        body["failOnErrors"] = fail_on_errors
    return body
