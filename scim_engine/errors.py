"""SCIM error taxonomy (RFC 7644 Section 3.12).

Every error raised by the engine derives from :class:`SCIMError` and knows
its HTTP status and, where RFC 7644 Table 9 defines one, its ``scimType``.
``to_dict()`` renders the error response body a server would send.
"""

from typing import Any, Dict, Optional

ERROR_URN = "urn:ietf:params:scim:api:messages:2.0:Error"


class SCIMError(Exception):
    """Base class for all SCIM errors.

    Args:
        detail:     Human-readable description of the problem
        status:     HTTP status code the error maps to
        scim_type:  RFC 7644 ``scimType`` keyword, if any
    """

    status = 400
    scim_type: Optional[str] = None

    def __init__(self, detail: str, status: Optional[int] = None,
                 scim_type: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if status is not None:
            self.status = status
        if scim_type is not None:
            self.scim_type = scim_type

    def to_dict(self) -> Dict[str, Any]:
        """Render as an RFC 7644 error response body."""
        body: Dict[str, Any] = {
            "schemas": [ERROR_URN],
            "status": str(self.status),
            "detail": self.detail,
        }
        if self.scim_type:
            body["scimType"] = self.scim_type
        return body

    def __str__(self):
        return self.detail


class InvalidFilter(SCIMError):
    """Malformed filter expression.

    ``position`` is the character offset in the filter text where parsing
    failed and ``fragment`` the text found there.
    """

    scim_type = "invalidFilter"

    def __init__(self, detail: str, position: Optional[int] = None, fragment: str = ""):
        if position is not None:
            detail = f"{detail} at position {position}"
            if fragment:
                detail = f"{detail} near {fragment!r}"
        super().__init__(detail)
        self.position = position
        self.fragment = fragment


class InvalidPath(SCIMError):
    """Malformed attribute path, or a schema URI prefix nobody knows."""

    scim_type = "invalidPath"

    def __init__(self, detail: str, path: str = ""):
        super().__init__(f"{detail}: {path!r}" if path else detail)
        self.path = path


class NoSuchAttribute(SCIMError):
    """A path that is well formed but does not resolve on the resource."""

    scim_type = "invalidPath"

    def __init__(self, path: str):
        super().__init__(f"No such attribute: {path!r}")
        self.path = path


class InvalidValue(SCIMError):
    scim_type = "invalidValue"


class PatchError(SCIMError):
    """Base class for failures while applying a PATCH operation."""


class NoTarget(PatchError):
    """The path's value filter matched nothing where a target is required."""

    scim_type = "noTarget"


class MutateImmutable(PatchError):
    """Attempt to modify a ``readOnly`` or ``immutable`` attribute."""

    scim_type = "mutability"


class PatchInvalidValue(PatchError, InvalidValue):
    """A PatchOp body or operation value that cannot be applied."""


class NotFound(SCIMError):
    status = 404

    def __init__(self, detail: str = "Resource not found", resource_id: Optional[str] = None):
        if resource_id is not None:
            detail = f"Resource {resource_id} not found"
        super().__init__(detail)
        self.resource_id = resource_id


class Conflict(SCIMError):
    """Uniqueness violation, e.g. creating a resource whose id already exists."""

    status = 409
    scim_type = "uniqueness"


class ConcurrentModification(SCIMError):
    """The stored version no longer matches the one the caller read."""

    status = 412

    def __init__(self, detail: str = "Resource version mismatch",
                 expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(detail)
        self.expected = expected
        self.actual = actual


class UnresolvedBulkId(SCIMError):
    status = 409
    scim_type = "invalidValue"

    def __init__(self, bulk_id: str):
        super().__init__(f"Unresolved bulkId reference: {bulk_id!r}")
        self.bulk_id = bulk_id


class TooManyOperations(SCIMError):
    status = 413
    scim_type = "tooMany"


def error_from_response(status: int, body: Any) -> SCIMError:
    """Map a SCIM error response (status code plus JSON body) back to an exception.

    Used by the remote adapter so that a third-party server's failures
    surface as the same exception types the in-process engine raises.
    """
    detail = ""
    scim_type = None
    if isinstance(body, dict):
        detail = str(body.get("detail") or "")
        scim_type = body.get("scimType")
    detail = detail or f"HTTP {status}"

    if status == 404:
        return NotFound(detail)
    if status == 412:
        return ConcurrentModification(detail)
    if status == 413:
        return TooManyOperations(detail)
    if status == 409 and scim_type in (None, "uniqueness"):
        return Conflict(detail)
    if status == 400:
        by_type = {
            "invalidFilter": InvalidFilter,
            "invalidPath": InvalidPath,
            "noTarget": NoTarget,
            "mutability": MutateImmutable,
            "invalidValue": InvalidValue,
        }
        cls = by_type.get(scim_type)
        if cls is not None:
            return cls(detail)
    return SCIMError(detail, status=status, scim_type=scim_type)
