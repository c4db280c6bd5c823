"""Tests for ResourceService: CRUD, list and PATCH over an adapter."""

import pytest
from scim_engine.adapters.memory import InMemoryAdapter
from scim_engine.errors import ConcurrentModification, MutateImmutable, NotFound
from scim_engine.filters import parse_filter
from scim_engine.query import QuerySpec
from scim_engine.schemas import GROUP, USER
from scim_engine.service import ResourceService, ServiceOptions
from tests.payloads import make_group, make_patch, make_user


@pytest.fixture
def service():
    return ResourceService(InMemoryAdapter("User"), USER,
                           options=ServiceOptions(base_url="https://example.com/scim/v2"))


def test_endpoint_comes_from_schema(service):
    assert service.endpoint == "Users"
    assert ResourceService(InMemoryAdapter("Group"), GROUP).endpoint == "Groups"


def test_location(service):
    assert service.location("abc") == "https://example.com/scim/v2/Users/abc"


def test_create_and_get(service):
    created = service.create(make_user(user_name="a"))
    assert service.get(created["id"])["userName"] == "a"


def test_create_never_returns_password(service):
    created = service.create(make_user(password="secret"))
    assert "password" not in created
    assert "password" not in service.get(created["id"])
    # still stored
    assert service.adapter.read(created["id"])["password"] == "secret"


def test_get_with_attributes(service):
    created = service.create(make_user(user_name="a", title="t"))
    assert set(service.get(created["id"], attributes=["title"])) == {"schemas", "id", "title"}
    assert "title" not in service.get(created["id"], excluded=["title"])


def test_get_unknown(service):
    with pytest.raises(NotFound):
        service.get("missing")


def test_list(service):
    for name in ("b", "a", "c"):
        service.create(make_user(user_name=name))
    result = service.list(QuerySpec(filter=parse_filter('userName ne "c"'), sort_by="userName"))
    assert [r["userName"] for r in result.resources] == ["a", "b"]
    assert result.total_results == 2


def test_list_defaults_to_everything(service):
    service.create(make_user())
    assert service.list().total_results == 1


def test_list_caps_count_at_max_results():
    service = ResourceService(InMemoryAdapter("User"), USER, options=ServiceOptions(max_results=2))
    for _ in range(5):
        service.create(make_user())
    result = service.list(QuerySpec(count=10))
    assert result.total_results == 5
    assert result.items_per_page == 2
    assert service.list().items_per_page == 2
    assert service.list(QuerySpec(count=1)).items_per_page == 1


def test_replace(service):
    created = service.create(make_user(user_name="a"))
    replaced = service.replace(created["id"], make_user(user_name="b"))
    assert replaced["userName"] == "b"


def test_patch_with_body(service):
    created = service.create(make_user(active=True))
    patched = service.patch(created["id"], make_patch({"op": "replace", "path": "active", "value": False}))
    assert patched["active"] is False
    assert service.get(created["id"])["active"] is False
    assert patched["meta"]["version"] != created["meta"]["version"]


def test_patch_with_operation_list(service):
    created = service.create(make_user())
    patched = service.patch(created["id"], [{"op": "add", "path": "nickName", "value": "n"}])
    assert patched["nickName"] == "n"


def test_patch_failure_leaves_stored_resource(service):
    created = service.create(make_user(user_name="a"))
    with pytest.raises(MutateImmutable):
        service.patch(created["id"], [
            {"op": "replace", "path": "userName", "value": "b"},
            {"op": "replace", "path": "id", "value": "x"},
        ])
    assert service.get(created["id"])["userName"] == "a"


def test_patch_with_stale_version(service):
    created = service.create(make_user())
    service.replace(created["id"], make_user())
    with pytest.raises(ConcurrentModification):
        service.patch(created["id"], [{"op": "add", "path": "nickName", "value": "n"}],
                      version=created["meta"]["version"])


def test_patch_detects_concurrent_write(service):
    created = service.create(make_user())
    adapter = service.adapter
    original_read = adapter.read

    def read_then_race(resource_id):
        current = original_read(resource_id)
        # another writer sneaks in between the read and the write
        adapter.replace(resource_id, make_user(user_name="racer"))
        return current

    adapter.read = read_then_race
    with pytest.raises(ConcurrentModification):
        service.patch(created["id"], [{"op": "add", "path": "nickName", "value": "n"}])
    adapter.read = original_read
    assert service.get(created["id"])["userName"] == "racer"


def test_delete(service):
    created = service.create(make_user())
    service.delete(created["id"])
    with pytest.raises(NotFound):
        service.get(created["id"])


def test_ensure_single_primary_option():
    service = ResourceService(InMemoryAdapter("User"), USER,
                              options=ServiceOptions(ensure_single_primary=True))
    created = service.create(make_user(emails=[
        {"value": "a@x.com", "primary": True},
        {"value": "b@x.com", "primary": True},
    ]))
    assert [e["primary"] for e in created["emails"]] == [False, True]

    patched = service.patch(created["id"], [{
        "op": "add", "path": "emails", "value": [{"value": "c@x.com", "primary": True}],
    }])
    assert [e.get("primary") for e in patched["emails"]] == [False, False, True]


def test_primary_flags_untouched_by_default(service):
    created = service.create(make_user(emails=[
        {"value": "a@x.com", "primary": True},
        {"value": "b@x.com", "primary": True},
    ]))
    assert [e["primary"] for e in created["emails"]] == [True, True]


def test_group_membership_patch():
    service = ResourceService(InMemoryAdapter("Group"), GROUP)
    created = service.create(make_group(members=["a", "b"]))
    patched = service.patch(created["id"], make_patch(
        {"op": "remove", "path": 'members[value eq "a"]'},
        {"op": "add", "path": "members", "value": [{"value": "c"}]},
    ))
    assert [m["value"] for m in patched["members"]] == ["b", "c"]
