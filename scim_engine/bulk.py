"""Bulk operations (RFC 7644 Section 3.7).

A bulk request is an ordered list of POST/PUT/PATCH/DELETE operations
against resource endpoints.  Operations run strictly in request order, one
at a time.  A POST may carry a ``bulkId``; later operations refer to the
resource it creates with ``"bulkId:<id>"`` in their path or anywhere in
their data.

Each operation succeeds or fails on its own; nothing is rolled back.
``failOnErrors`` stops the batch once that many operations have failed.
The operations that never started are reported as canceled and left out
of the wire response.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .errors import InvalidPath, InvalidValue, SCIMError, TooManyOperations, UnresolvedBulkId
from .resource import get_attr, resource_id, resource_version
from .schemas import BULK_REQUEST_URN, BULK_RESPONSE_URN
from .service import ResourceService, ServiceOptions

logger = logging.getLogger(__name__)

BULK_ID_PREFIX = "bulkId:"

_PATH_RE = re.compile(r"^/?([A-Za-z][\w-]*)(?:/([^/]+))?/?$")


class BatchState(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"


class BulkMethod(str, Enum):
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


@dataclass
class BulkOperation:
    method: BulkMethod
    path: str
    bulk_id: Optional[str] = None
    data: Any = None
    version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, index: int = 0) -> "BulkOperation":
        where = f"Operations[{index}]"
        if not isinstance(data, dict):
            raise InvalidValue(f"{where}: operation must be an object")
        method = get_attr(data, "method")
        try:
            method = BulkMethod(str(method).upper())
        except ValueError:
            raise InvalidValue(f"{where}: invalid method {method!r}") from None
        path = get_attr(data, "path")
        if not isinstance(path, str) or not path:
            raise InvalidValue(f"{where}: 'path' is required")
        bulk_id = get_attr(data, "bulkId")
        if method == BulkMethod.POST and not bulk_id:
            raise InvalidValue(f"{where}: POST operations require 'bulkId'")
        payload = get_attr(data, "data")
        if method in (BulkMethod.POST, BulkMethod.PUT, BulkMethod.PATCH) and not isinstance(payload, dict):
            raise InvalidValue(f"{where}: {method.value} operations require 'data'")
        return cls(method, path, bulk_id, payload, get_attr(data, "version"))


@dataclass
class BulkRequest:
    """A BulkRequest envelope.

    ``operations`` keeps each operation as sent (or as a :class:`BulkOperation`);
    operations are validated one by one as they run, so a malformed one
    fails on its own instead of rejecting the batch.
    """

    operations: List[Union[BulkOperation, Any]]
    fail_on_errors: Optional[int] = None

    @classmethod
    def from_dict(cls, body: Any) -> "BulkRequest":
        """Validate a BulkRequest message body."""
        if not isinstance(body, dict):
            raise InvalidValue("Bulk request body must be a JSON object")
        schemas = body.get("schemas")
        if not isinstance(schemas, list) or BULK_REQUEST_URN not in schemas:
            raise InvalidValue(f"Bulk request must include schema: '{BULK_REQUEST_URN}'")
        operations = get_attr(body, "Operations")
        if not isinstance(operations, list):
            raise InvalidValue("'Operations' must be an array")
        fail_on_errors = get_attr(body, "failOnErrors")
        if fail_on_errors is not None and (
                isinstance(fail_on_errors, bool) or not isinstance(fail_on_errors, int)
                or fail_on_errors < 0):
            raise InvalidValue("'failOnErrors' must be a non-negative integer")
        return cls(list(operations), fail_on_errors or None)


@dataclass
class BulkResult:
    """Outcome of one bulk operation, index-aligned with the request."""

    method: str
    status: int
    bulk_id: Optional[str] = None
    location: Optional[str] = None
    version: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    canceled: bool = False

    @property
    def failed(self) -> bool:
        return not self.canceled and self.status >= 400

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"method": self.method}
        if self.bulk_id:
            data["bulkId"] = self.bulk_id
        if self.version:
            data["version"] = self.version
        if self.location:
            data["location"] = self.location
        data["status"] = str(self.status)
        if self.response is not None:
            data["response"] = self.response
        return data


@dataclass
class BulkResponse:
    results: List[BulkResult] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if r.failed)

    def to_dict(self) -> Dict[str, Any]:
        """Render the BulkResponse message; canceled operations are omitted."""
        return {
            "schemas": [BULK_RESPONSE_URN],
            "Operations": [r.to_dict() for r in self.results if not r.canceled],
        }


def _describe(operation: Any) -> Tuple[str, Optional[str]]:
    """Method and bulkId of an operation, even a malformed one, for its result."""
    if isinstance(operation, BulkOperation):
        return operation.method.value, operation.bulk_id
    if not isinstance(operation, dict):
        return "", None
    method = get_attr(operation, "method")
    bulk_id = get_attr(operation, "bulkId")
    return (method.upper() if isinstance(method, str) else "",
            bulk_id if isinstance(bulk_id, str) else None)


class BulkBatch:
    """Execution state of a single bulk request."""

    def __init__(self, request: BulkRequest):
        self.request = request
        self.state = BatchState.PENDING
        self.ids: Dict[str, str] = {}
        self.results: List[BulkResult] = []

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if r.failed)

    def threshold_reached(self) -> bool:
        limit = self.request.fail_on_errors
        return limit is not None and self.error_count >= limit

    def resolve(self, value: Any) -> Any:
        """Replace ``bulkId:<id>`` references in ``value`` with created ids."""
        if isinstance(value, str):
            if value.startswith(BULK_ID_PREFIX):
                key = value[len(BULK_ID_PREFIX):]
                if key not in self.ids:
                    raise UnresolvedBulkId(key)
                return self.ids[key]
            return value
        if isinstance(value, list):
            return [self.resolve(v) for v in value]
        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        return value


class BulkCoordinator:
    """Runs bulk requests against a set of resource services.

    Args:
        services:  Endpoint name (``Users``) to :class:`ResourceService`
        options:   Shared options; ``bulk_enabled`` and ``max_bulk_operations``
                   apply here
    """

    def __init__(self, services: Mapping[str, ResourceService],
                 options: Optional[ServiceOptions] = None):
        self.services = dict(services)
        self.options = options or ServiceOptions()
        self.last_batch: Optional[BulkBatch] = None

    def execute(self, request: Union[BulkRequest, Dict[str, Any]]) -> BulkResponse:
        if not self.options.bulk_enabled:
            raise SCIMError("Bulk operations are not enabled", status=501)
        if not isinstance(request, BulkRequest):
            request = BulkRequest.from_dict(request)
        limit = self.options.max_bulk_operations
        if len(request.operations) > limit:
            raise TooManyOperations(
                f"Bulk request has {len(request.operations)} operations; the maximum is {limit}")

        batch = BulkBatch(request)
        self.last_batch = batch
        batch.state = BatchState.EXECUTING
        logger.info("Executing bulk request with %d operation(s)", len(request.operations))
        try:
            for index, operation in enumerate(request.operations):
                if batch.threshold_reached():
                    method, bulk_id = _describe(operation)
                    batch.results.append(BulkResult(method, 0, bulk_id, canceled=True))
                    continue
                batch.results.append(self._run(batch, index, operation))
        finally:
            batch.state = BatchState.COMPLETED
        logger.info("Bulk request finished: %d failed, %d canceled", batch.error_count,
                    sum(1 for r in batch.results if r.canceled))
        return BulkResponse(batch.results)

    def _run(self, batch: BulkBatch, index: int, operation: Any) -> BulkResult:
        method, bulk_id = _describe(operation)
        try:
            if not isinstance(operation, BulkOperation):
                operation = BulkOperation.from_dict(operation, index)
            return self._dispatch(batch, operation)
        except SCIMError as exc:
            logger.info("Bulk operation %d (%s) failed: %s", index, method, exc)
            return BulkResult(method, exc.status, bulk_id, response=exc.to_dict())
        except Exception:
            # Earlier operations stay committed
            logger.exception("Bulk operation %d (%s) raised an unexpected error", index, method)
            error = SCIMError("Internal server error", status=500)
            return BulkResult(method, error.status, bulk_id, response=error.to_dict())

    def _dispatch(self, batch: BulkBatch, operation: BulkOperation) -> BulkResult:
        service, target_id = self._route(batch, operation)
        data = batch.resolve(operation.data)
        method = operation.method

        if method == BulkMethod.POST:
            if target_id is not None:
                raise InvalidPath("POST must target a resource endpoint", operation.path)
            created = service.create(data)
            new_id = resource_id(created)
            if operation.bulk_id:
                batch.ids[operation.bulk_id] = new_id
            return BulkResult(method.value, 201, operation.bulk_id, service.location(new_id),
                              resource_version(created), created)

        if target_id is None:
            raise InvalidPath(f"{method.value} requires a resource id", operation.path)
        if method == BulkMethod.DELETE:
            service.delete(target_id, operation.version)
            return BulkResult(method.value, 204, operation.bulk_id, service.location(target_id))
        if method == BulkMethod.PUT:
            result = service.replace(target_id, data, operation.version)
        else:
            result = service.patch(target_id, data, operation.version)
        return BulkResult(method.value, 200, operation.bulk_id, service.location(target_id),
                          resource_version(result), result)

    def _route(self, batch: BulkBatch, operation: BulkOperation):
        match = _PATH_RE.match(operation.path)
        if match is None:
            raise InvalidPath("Invalid bulk operation path", operation.path)
        endpoint, target_id = match.group(1), match.group(2)
        service = None
        for name, candidate in self.services.items():
            if name.lower() == endpoint.lower():
                service = candidate
        if service is None:
            raise InvalidPath("Unknown resource endpoint", operation.path)
        if target_id is not None:
            target_id = batch.resolve(target_id)
        return service, target_id
