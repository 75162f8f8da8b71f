import pytest

from machinegate.api.models import ObjectMeta, Secret, ServiceAccount, owner_reference_for
from machinegate.store.errors import AlreadyExistsError, ConflictError, NotFoundError
from machinegate.store.memory import ADDED, DELETED, MODIFIED, ObjectStore


def _sa(name="sa", ns="ns", **meta):
    return ServiceAccount(metadata=ObjectMeta(name=name, namespace=ns, **meta))


def test_create_assigns_uid_and_version_and_get_returns_copy():
    store = ObjectStore()
    created = store.create(_sa(labels={"a": "1"}))
    assert created.metadata.uid
    assert created.metadata.resource_version == 1

    got = store.get(ServiceAccount, "ns", "sa")
    got.metadata.labels["a"] = "changed"
    assert store.get(ServiceAccount, "ns", "sa").metadata.labels == {"a": "1"}


def test_create_twice_raises_already_exists():
    store = ObjectStore()
    store.create(_sa())
    with pytest.raises(AlreadyExistsError):
        store.create(_sa())


def test_get_missing_raises_not_found():
    store = ObjectStore()
    with pytest.raises(NotFoundError) as exc:
        store.get(Secret, "ns", "nope")
    assert exc.value.kind == "Secret"
    assert exc.value.name == "nope"


def test_update_with_stale_version_conflicts():
    store = ObjectStore()
    store.create(_sa())
    first = store.get(ServiceAccount, "ns", "sa")
    second = store.get(ServiceAccount, "ns", "sa")

    first.metadata.labels = {"x": "1"}
    store.update(first)

    second.metadata.labels = {"x": "2"}
    with pytest.raises(ConflictError):
        store.update(second)
    assert store.get(ServiceAccount, "ns", "sa").metadata.labels == {"x": "1"}


def test_list_filters_by_namespace_and_selector():
    store = ObjectStore()
    store.create(_sa("a", "ns1", labels={"role": "plan"}))
    store.create(_sa("b", "ns1", labels={"role": "bootstrap"}))
    store.create(_sa("c", "ns2", labels={"role": "plan"}))

    assert [o.metadata.name for o in store.list(ServiceAccount)] == ["a", "b", "c"]
    assert [o.metadata.name for o in store.list(ServiceAccount, "ns1")] == ["a", "b"]
    assert [o.metadata.name for o in store.list(ServiceAccount, selector={"role": "plan"})] == ["a", "c"]


def test_delete_with_finalizer_only_marks_until_finalizer_removed():
    store = ObjectStore()
    store.create(_sa(finalizers=["keep"]))
    store.delete(ServiceAccount, "ns", "sa")

    live = store.get(ServiceAccount, "ns", "sa")
    assert live.deleting

    live.metadata.finalizers = []
    store.update(live)
    with pytest.raises(NotFoundError):
        store.get(ServiceAccount, "ns", "sa")


def test_update_cannot_clear_deletion_timestamp():
    store = ObjectStore()
    store.create(_sa(finalizers=["keep"]))
    store.delete(ServiceAccount, "ns", "sa")
    live = store.get(ServiceAccount, "ns", "sa")
    live.metadata.deletion_timestamp = None
    assert store.update(live).deleting


def test_delete_cascades_to_dependents():
    store = ObjectStore()
    owner = store.create(_sa("owner"))
    child = store.create(Secret(metadata=ObjectMeta(name="child", namespace="ns",
                                                    owner_references=[owner_reference_for(owner)])))
    store.create(Secret(metadata=ObjectMeta(name="grandchild", namespace="ns",
                                            owner_references=[owner_reference_for(child)])))

    assert [d.metadata.name for d in store.dependents(owner)] == ["child"]

    store.delete(ServiceAccount, "ns", "owner")
    assert store.list(Secret) == []


def test_dependent_with_another_live_owner_survives():
    store = ObjectStore()
    a = store.create(_sa("a"))
    b = store.create(_sa("b"))
    store.create(Secret(metadata=ObjectMeta(name="shared", namespace="ns",
                                            owner_references=[owner_reference_for(a), owner_reference_for(b)])))
    store.delete(ServiceAccount, "ns", "a")
    assert store.get(Secret, "ns", "shared")


def test_watchers_see_added_modified_deleted():
    store = ObjectStore()
    seen = []
    store.watch(lambda event, obj: seen.append((event, obj.metadata.name)))

    store.create(_sa())
    live = store.get(ServiceAccount, "ns", "sa")
    live.metadata.labels = {"a": "b"}
    store.update(live)
    store.delete(ServiceAccount, "ns", "sa")

    assert seen == [(ADDED, "sa"), (MODIFIED, "sa"), (DELETED, "sa")]
