"""Tests for the in-memory adapter."""

import pytest
from scim_engine.adapters import InMemoryAdapter, Listing, ResourceAdapter
from scim_engine.errors import ConcurrentModification, Conflict, NotFound
from tests.payloads import make_user


@pytest.fixture
def adapter():
    return InMemoryAdapter("User", base_url="https://example.com/scim/v2/")


def test_satisfies_adapter_protocol(adapter):
    assert isinstance(adapter, ResourceAdapter)


def test_create_assigns_id_and_meta(adapter):
    created = adapter.create(make_user(user_name="a"))
    assert created["id"]
    meta = created["meta"]
    assert meta["resourceType"] == "User"
    assert meta["location"] == f"https://example.com/scim/v2/Users/{created['id']}"
    assert meta["version"].startswith('W/"')
    assert meta["created"] == meta["lastModified"]


def test_create_keeps_supplied_id(adapter):
    assert adapter.create(make_user(id="fixed"))["id"] == "fixed"


def test_create_duplicate_id_conflicts(adapter):
    adapter.create(make_user(id="fixed"))
    with pytest.raises(Conflict) as exc_info:
        adapter.create(make_user(id="fixed"))
    assert exc_info.value.status == 409
    assert exc_info.value.scim_type == "uniqueness"


def test_create_stores_a_copy(adapter):
    user = make_user()
    created = adapter.create(user)
    user["userName"] = "mutated"
    created["userName"] = "mutated too"
    assert adapter.read(created["id"])["userName"] != "mutated"
    assert "id" not in user


def test_read_unknown_id(adapter):
    with pytest.raises(NotFound) as exc_info:
        adapter.read("missing")
    assert exc_info.value.status == 404
    assert exc_info.value.resource_id == "missing"


def test_replace_bumps_version_and_keeps_created(adapter):
    created = adapter.create(make_user(user_name="a"))
    replaced = adapter.replace(created["id"], make_user(user_name="b"))
    assert replaced["userName"] == "b"
    assert replaced["id"] == created["id"]
    assert replaced["meta"]["version"] != created["meta"]["version"]
    assert replaced["meta"]["created"] == created["meta"]["created"]


def test_replace_ignores_id_in_body(adapter):
    created = adapter.create(make_user())
    replaced = adapter.replace(created["id"], make_user(id="other"))
    assert replaced["id"] == created["id"]
    assert adapter.ids() == [created["id"]]


def test_replace_with_current_version(adapter):
    created = adapter.create(make_user())
    adapter.replace(created["id"], make_user(user_name="x"), created["meta"]["version"])


def test_replace_with_stale_version(adapter):
    created = adapter.create(make_user())
    adapter.replace(created["id"], make_user())
    with pytest.raises(ConcurrentModification) as exc_info:
        adapter.replace(created["id"], make_user(), created["meta"]["version"])
    assert exc_info.value.status == 412
    assert exc_info.value.expected == created["meta"]["version"]


def test_replace_unknown_id(adapter):
    with pytest.raises(NotFound):
        adapter.replace("missing", make_user())


def test_delete(adapter):
    created = adapter.create(make_user())
    adapter.delete(created["id"])
    assert len(adapter) == 0
    with pytest.raises(NotFound):
        adapter.delete(created["id"])


def test_delete_with_stale_version(adapter):
    created = adapter.create(make_user())
    adapter.replace(created["id"], make_user())
    with pytest.raises(ConcurrentModification):
        adapter.delete(created["id"], created["meta"]["version"])
    assert len(adapter) == 1


def test_list_returns_everything_unprocessed(adapter):
    for name in ("a", "b", "c"):
        adapter.create(make_user(user_name=name))
    listed = adapter.list()
    assert not isinstance(listed, Listing)
    assert [u["userName"] for u in listed] == ["a", "b", "c"]


def test_preloaded_resources_keep_their_meta():
    user = make_user(id="1", meta={"resourceType": "User", "version": 'W/"abc"'})
    adapter = InMemoryAdapter("User", resources=[user])
    assert adapter.read("1")["meta"]["version"] == 'W/"abc"'


def test_custom_endpoint():
    adapter = InMemoryAdapter("Device", endpoint="/Things", base_url="http://x")
    created = adapter.create({"schemas": ["urn:example:Device"]})
    assert created["meta"]["location"] == f"http://x/Things/{created['id']}"
