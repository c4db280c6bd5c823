"""The storage contract the engine talks to.

The engine never persists anything itself.  Every resource type is backed
by an object satisfying :class:`ResourceAdapter`, injected by the caller.
The engine only depends on this protocol, never on a concrete adapter.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

if TYPE_CHECKING:
    from ..query import QuerySpec


@dataclass
class Listing:
    """An adapter's answer to :meth:`ResourceAdapter.list`.

    The flags say which stages of the query the adapter already applied,
    for example because it translated the filter into SQL or passed it on
    to a remote server.  The query processor finishes the rest in memory.

    An adapter that only applies part of a filter must leave ``filtered``
    false and should not paginate: pagination is only meaningful once all
    filtering and sorting is done.

    Attributes:
        resources:      The resources returned
        total_results:  Total matches across all pages; required when
                        ``paginated`` is set, otherwise computed
        filtered:       ``spec.filter`` was applied
        sorted:         ``spec.sort_by`` / ``spec.sort_order`` were applied
        paginated:      ``spec.start_index`` / ``spec.count`` were applied
        projected:      ``spec.attributes`` / ``spec.excluded_attributes`` were applied
    """

    resources: List[Dict[str, Any]] = field(default_factory=list)
    total_results: Optional[int] = None
    filtered: bool = False
    sorted: bool = False
    paginated: bool = False
    projected: bool = False


ListOutcome = Union[Listing, Sequence[Dict[str, Any]]]


@runtime_checkable
class ResourceAdapter(Protocol):
    """Interface for one resource type's storage.

    Implementations must provide CRUD plus listing.  Errors are reported
    with the engine's exception types:

    - :class:`~scim_engine.errors.NotFound` for unknown ids
    - :class:`~scim_engine.errors.Conflict` for uniqueness violations
    - :class:`~scim_engine.errors.ConcurrentModification` when a supplied
      version no longer matches the stored one
    """

    def create(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        """Store a new resource and return it as stored (with ``id`` and ``meta``)."""
        ...

    def read(self, resource_id: str) -> Dict[str, Any]:
        """Return the stored resource.

        Raises:
            NotFound: If no resource has this id.
        """
        ...

    def replace(self, resource_id: str, resource: Dict[str, Any],
                version: Optional[str] = None) -> Dict[str, Any]:
        """Overwrite a stored resource.

        Args:
            resource_id: Id of the resource to overwrite.
            resource: The complete new representation.
            version: If given, the write only succeeds when the stored
                ``meta.version`` still equals it.

        Raises:
            NotFound: If no resource has this id.
            ConcurrentModification: On a version mismatch.
        """
        ...

    def delete(self, resource_id: str, version: Optional[str] = None) -> None:
        """Remove a resource.

        Raises:
            NotFound: If no resource has this id.
            ConcurrentModification: On a version mismatch.
        """
        ...

    def list(self, spec: "QuerySpec") -> ListOutcome:
        """Return candidate resources for a query.

        A plain sequence means nothing in ``spec`` was applied; return a
        :class:`Listing` to report the stages that were.
        """
        ...
