"""Tests for paging through services and one-way synchronization."""

import pytest
from scim_engine.adapters import InMemoryAdapter, RemoteAdapter
from scim_engine.http_client import SCIMClient
from scim_engine.schemas import USER
from scim_engine.service import ResourceService
from scim_engine.sync import fetch_all_ids, iter_pages, sync_resources
from tests.mock_scim_server import MockSCIMServer
from tests.payloads import make_user


def local_service(users=()):
    return ResourceService(InMemoryAdapter("User", resources=list(users)), USER)


def test_iter_pages():
    service = local_service(make_user(id=str(i)) for i in range(5))
    pages = list(iter_pages(service, page_size=2))
    assert [len(p) for p in pages] == [2, 2, 1]


def test_iter_pages_empty():
    assert list(iter_pages(local_service(), page_size=2)) == []


def test_iter_pages_rejects_bad_page_size():
    with pytest.raises(ValueError):
        list(iter_pages(local_service(), page_size=0))


def test_fetch_all_ids():
    service = local_service(make_user(id=i) for i in ("a", "b", "c"))
    assert fetch_all_ids(service, page_size=2) == {"a", "b", "c"}


def test_sync_creates_and_updates():
    source = local_service([make_user(id="1", user_name="new-1"), make_user(id="2", user_name="new-2")])
    target = local_service([make_user(id="2", user_name="old-2")])
    report = sync_resources(source, target)
    assert report.created == ["1"]
    assert report.updated == ["2"]
    assert report.deleted == []
    assert target.get("2")["userName"] == "new-2"
    assert target.get("1")["userName"] == "new-1"


def test_sync_deletes_orphans_only_when_asked():
    source = local_service([make_user(id="1")])
    target = local_service([make_user(id="1"), make_user(id="orphan")])
    assert sync_resources(source, target).deleted == []
    assert "orphan" in target.adapter.ids()
    report = sync_resources(source, target, delete_orphans=True)
    assert report.deleted == ["orphan"]
    assert target.adapter.ids() == ["1"]


def test_sync_from_remote_server():
    users = [make_user(id=f"u{i}", user_name=f"user{i}") for i in range(7)]
    with MockSCIMServer(users=users) as server:
        source = ResourceService(RemoteAdapter(SCIMClient(server.base_url), "/Users"), USER)
        target = local_service()
        report = sync_resources(source, target, page_size=3)
        assert len(report.created) == 7
        assert sorted(target.adapter.ids()) == sorted(u["id"] for u in users)
        # three pages of users plus nothing else
        assert [m for m, _, _ in server.requests] == ["GET", "GET", "GET"]


def test_sync_from_server_that_ignores_paging():
    users = [make_user(id=f"u{i}") for i in range(5)]
    with MockSCIMServer(users=users, non_conformances={"ignore_paging": True}) as server:
        source = ResourceService(RemoteAdapter(SCIMClient(server.base_url), "/Users"), USER)
        target = local_service()
        report = sync_resources(source, target, page_size=2)
        assert len(report.created) == 5
