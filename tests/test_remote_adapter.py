"""Tests for RemoteAdapter against the mock SCIM server."""

import pytest
from scim_engine.adapters import RemoteAdapter, ResourceAdapter
from scim_engine.errors import ConcurrentModification, Conflict, InvalidFilter, NotFound
from scim_engine.filters import parse_filter
from scim_engine.http_client import SCIMClient
from scim_engine.query import QuerySpec
from scim_engine.schemas import USER
from scim_engine.service import ResourceService
from tests.mock_scim_server import MockSCIMServer
from tests.payloads import make_user


@pytest.fixture
def server():
    with MockSCIMServer(users=[make_user(user_name=n, id=n) for n in ("carol", "alice", "bob")]) as s:
        yield s


@pytest.fixture
def adapter(server):
    return RemoteAdapter(SCIMClient(server.base_url), "Users")


def test_satisfies_adapter_protocol(adapter):
    assert isinstance(adapter, ResourceAdapter)
    assert adapter.endpoint == "/Users"


def test_create_and_read(server, adapter):
    created = adapter.create(make_user(user_name="dave"))
    assert created["id"] in server.users.ids()
    assert adapter.read(created["id"])["userName"] == "dave"


def test_read_missing_raises_not_found(adapter):
    with pytest.raises(NotFound):
        adapter.read("missing")


def test_create_duplicate_raises_conflict(adapter):
    with pytest.raises(Conflict):
        adapter.create(make_user(id="alice"))


def test_replace(adapter):
    replaced = adapter.replace("bob", make_user(user_name="robert"))
    assert replaced["userName"] == "robert"


def test_delete(server, adapter):
    adapter.delete("carol")
    assert "carol" not in server.users.ids()
    with pytest.raises(NotFound):
        adapter.delete("carol")


def test_versions_are_not_sent_by_default(server, adapter):
    adapter.replace("bob", make_user(), version='W/"stale"')
    _, _, headers = server.requests[-1]
    assert "If-Match" not in headers


def test_versions_sent_with_etags_enabled(server):
    adapter = RemoteAdapter(SCIMClient(server.base_url), "/Users/", use_etags=True)
    current = adapter.read("bob")
    adapter.replace("bob", make_user(), version=current["meta"]["version"])
    with pytest.raises(ConcurrentModification):
        adapter.replace("bob", make_user(), version=current["meta"]["version"])
    with pytest.raises(ConcurrentModification):
        adapter.delete("bob", version='W/"stale"')


def test_list_pushes_query_down(server, adapter):
    spec = QuerySpec(filter=parse_filter('userName ne "bob"'), sort_by="userName", count=1,
                     attributes=["userName"])
    listing = adapter.list(spec)
    assert listing.filtered and listing.sorted and listing.paginated and listing.projected
    assert listing.total_results == 2
    assert [r["userName"] for r in listing.resources] == ["alice"]
    method, path, _ = server.requests[-1]
    assert method == "GET"
    assert "sortBy=userName" in path


def test_service_over_remote_adapter(adapter):
    service = ResourceService(adapter, USER)
    result = service.list(QuerySpec(sort_by="userName", start_index=2, count=5))
    assert result.total_results == 3
    assert [r["userName"] for r in result.resources] == ["bob", "carol"]
    assert result.start_index == 2

    patched = service.patch("alice", [{"op": "add", "path": "nickName", "value": "Al"}])
    assert patched["nickName"] == "Al"


class _RawSpec:
    """Sends query parameters as given, bypassing local parsing."""

    def __init__(self, **params):
        self.params = params

    def to_params(self):
        return self.params


def test_remote_errors_keep_their_type(adapter):
    with pytest.raises(InvalidFilter):
        adapter.list(_RawSpec(filter="userName eq"))
