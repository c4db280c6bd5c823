"""One-way resource synchronization between two services.

Typical use is mirroring a remote SCIM server into local storage::

    source = ResourceService(RemoteAdapter(client, "/Users"), USER)
    target = ResourceService(InMemoryAdapter("User"), USER)
    report = sync_resources(source, target, delete_orphans=True)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from .query import QuerySpec
from .resource import del_attr, resource_id
from .service import ResourceService

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    skipped: int = 0


def iter_pages(service: ResourceService, page_size: int = 100,
               spec: Optional[QuerySpec] = None) -> Iterator[List[Dict[str, Any]]]:
    """Yield successive pages of a service's resources using ``startIndex``/``count``."""
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    base = spec or QuerySpec()
    start = 1
    while True:
        page = service.list(QuerySpec(base.filter, base.sort_by, base.sort_order, start,
                                      page_size, base.attributes, base.excluded_attributes))
        if page.resources:
            yield page.resources
        start += len(page.resources)
        if not page.resources or start > page.total_results:
            return


def fetch_all_ids(service: ResourceService, page_size: int = 100) -> Set[str]:
    spec = QuerySpec(attributes=["id"])
    ids = set()
    for page in iter_pages(service, page_size, spec):
        ids.update(resource_id(r) for r in page if resource_id(r))
    return ids


def sync_resources(source: ResourceService, target: ResourceService, page_size: int = 100,
                   delete_orphans: bool = False) -> SyncReport:
    """Copy every resource from ``source`` to ``target``, keeping ids.

    Resources already on the target are replaced, the rest are created.
    With ``delete_orphans`` target resources missing from the source are
    deleted afterwards.  Resources without an id are skipped.
    """
    report = SyncReport()
    target_ids = fetch_all_ids(target, page_size)
    seen: Set[str] = set()

    for page in iter_pages(source, page_size):
        for resource in page:
            rid = resource_id(resource)
            if not rid:
                report.skipped += 1
                continue
            payload = dict(resource)
            del_attr(payload, "meta")
            if rid in target_ids:
                target.replace(rid, payload)
                report.updated.append(rid)
            else:
                target.create(payload)
                report.created.append(rid)
            seen.add(rid)

    if delete_orphans:
        for rid in sorted(target_ids - seen):
            target.delete(rid)
            report.deleted.append(rid)

    logger.info("Synced %s: %d created, %d updated, %d deleted", target.endpoint,
                len(report.created), len(report.updated), len(report.deleted))
    return report
