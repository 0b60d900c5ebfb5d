"""Tests for the network element registry."""

import pytest

from sdnredirect.redirection import (
    BackendFailure,
    ElementRegistry,
    NetworkElement,
    NotFoundError,
    PortNotFoundError,
)


@pytest.fixture
def registry(backend) -> ElementRegistry:
    backend.connect()
    return ElementRegistry(backend)


def _elements(*ids: str) -> list[NetworkElement]:
    return [NetworkElement(element_id=i) for i in ids]


def test_register_preserves_child_order(registry) -> None:
    composite = registry.register(_elements("p3", "p1", "p2"))

    assert composite.children == ["p3", "p1", "p2"]
    assert composite.element_id in registry
    assert [c.element_id for c in registry.list(composite)] == ["p3", "p1", "p2"]


def test_list_children_carry_parent(registry) -> None:
    composite = registry.register(_elements("p1", "p2"))

    children = registry.list(composite)

    assert all(c.parent_id == composite.element_id for c in children)


def test_list_unknown_element_is_absent(registry) -> None:
    assert registry.list(NetworkElement(element_id="missing")) is None


def test_list_leaf_has_no_children(registry) -> None:
    assert registry.list(NetworkElement(element_id="p1")) == []


def test_register_duplicate_child_fails(registry) -> None:
    with pytest.raises(BackendFailure, match="duplicate"):
        registry.register(_elements("p1", "p1"))


def test_register_unknown_child_fails(registry) -> None:
    with pytest.raises(BackendFailure, match="unknown child"):
        registry.register(_elements("p1", "ghost"))


def test_update_replaces_children(registry) -> None:
    composite = registry.register(_elements("p1", "p2"))

    updated = registry.update(composite, _elements("p2", "p4"))

    assert updated.element_id == composite.element_id
    assert [c.element_id for c in registry.list(composite)] == ["p2", "p4"]


def test_update_unknown_element_raises_not_found(registry) -> None:
    with pytest.raises(NotFoundError):
        registry.update(NetworkElement(element_id="missing"), _elements("p1"))


def test_update_leaf_port_fails(registry) -> None:
    with pytest.raises(BackendFailure):
        registry.update(NetworkElement(element_id="p1"), _elements("p2"))


def test_update_rejects_cycle(registry) -> None:
    inner = registry.register(_elements("p1"))
    outer = registry.register([inner])

    with pytest.raises(BackendFailure, match="cyclic"):
        registry.update(inner, [outer])

    assert [c.element_id for c in registry.list(inner)] == ["p1"]


def test_delete_is_idempotent(registry) -> None:
    composite = registry.register(_elements("p1", "p2"))

    registry.delete(composite)
    registry.delete(composite)

    assert registry.list(composite) is None
    assert composite.element_id not in registry


def test_delete_child_of_composite_fails(registry) -> None:
    inner = registry.register(_elements("p1"))
    registry.register([inner])

    with pytest.raises(BackendFailure, match="child"):
        registry.delete(inner)


def test_resolve_falls_back_to_backend(registry, backend) -> None:
    created = backend.create_element(_elements("p5", "p6"))

    assert created.element_id not in registry
    resolved = registry.resolve(created.element_id)

    assert resolved.children == ["p5", "p6"]
    assert created.element_id in registry


def test_list_reads_through_stale_cache(registry, backend) -> None:
    composite = registry.register(_elements("p1", "p2"))
    backend.update_element(composite.element_id, _elements("p3"))

    assert [c.element_id for c in registry.list(composite)] == ["p3"]


def test_require_port_raises_port_not_found(registry) -> None:
    with pytest.raises(PortNotFoundError) as exc_info:
        registry.require_port(NetworkElement(element_id="ghost"))

    assert exc_info.value.element_id == "ghost"
    assert not isinstance(exc_info.value, NotFoundError)


def test_clear_drops_cache_only(registry) -> None:
    composite = registry.register(_elements("p1"))
    registry.clear()

    assert len(registry) == 0
    assert registry.resolve(composite) is not None
