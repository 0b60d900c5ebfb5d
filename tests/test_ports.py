"""Tests for the inspection port manager."""

import pytest

from sdnredirect.redirection import (
    ElementRegistry,
    InspectionPortElement,
    NetworkElement,
    PortManager,
    PortNotFoundError,
)


@pytest.fixture
def ports(backend) -> PortManager:
    backend.connect()
    return PortManager(backend, ElementRegistry(backend))


def _pair(ingress: str, egress: str | None = None) -> InspectionPortElement:
    return InspectionPortElement(
        ingress_port=NetworkElement(element_id=ingress),
        egress_port=NetworkElement(element_id=egress or ingress),
    )


def test_register_assigns_id(ports) -> None:
    port = ports.register(_pair("p3"))

    assert port.element_id
    assert port.pair_key == ("p3", "p3")


def test_register_same_pair_twice_returns_same_id(ports, backend) -> None:
    first = ports.register(_pair("p3", "p4"))
    second = ports.register(_pair("p3", "p4"))

    assert first.element_id == second.element_id
    assert len(ports) == 1
    assert len(backend.list_ports()) == 1


def test_register_is_idempotent_on_backend_after_cache_loss(ports, backend) -> None:
    first = ports.register(_pair("p3"))
    ports.clear()

    second = ports.register(_pair("p3"))

    assert second.element_id == first.element_id
    assert len(backend.list_ports()) == 1


def test_reversed_pair_is_a_different_port(ports) -> None:
    forward = ports.register(_pair("p3", "p4"))
    reverse = ports.register(_pair("p4", "p3"))

    assert forward.element_id != reverse.element_id


def test_register_unknown_end_raises_port_not_found(ports) -> None:
    with pytest.raises(PortNotFoundError) as exc_info:
        ports.register(_pair("p3", "ghost"))

    assert exc_info.value.element_id == "ghost"


def test_register_succeeds_after_element_is_provisioned(ports, backend) -> None:
    with pytest.raises(PortNotFoundError):
        ports.register(_pair("p9"))

    backend.provision_port(NetworkElement(element_id="p9"))

    assert ports.register(_pair("p9")).element_id


def test_get_by_pair_and_by_id_agree(ports) -> None:
    registered = ports.register(_pair("p3"))
    by_id = InspectionPortElement(
        ingress_port=NetworkElement(element_id="p3"),
        egress_port=NetworkElement(element_id="p3"),
        element_id=registered.element_id,
    )

    assert ports.get(_pair("p3")).element_id == registered.element_id
    assert ports.get(by_id).element_id == registered.element_id


def test_get_unregistered_is_absent(ports) -> None:
    assert ports.get(_pair("p3")) is None


def test_get_finds_port_created_on_backend(ports, backend) -> None:
    created = backend.create_port(_pair("p5"))

    found = ports.get(_pair("p5"))

    assert found.element_id == created.element_id
    assert len(ports) == 1


def test_remove_is_idempotent(ports, backend) -> None:
    ports.register(_pair("p3"))

    ports.remove(_pair("p3"))
    ports.remove(_pair("p3"))

    assert ports.get(_pair("p3")) is None
    assert backend.list_ports() == []


def test_remove_with_unknown_end_raises_port_not_found(ports) -> None:
    with pytest.raises(PortNotFoundError):
        ports.remove(_pair("ghost"))


def test_load_replaces_cache(ports, backend) -> None:
    ports.register(_pair("p3"))
    other = backend.create_port(_pair("p4"))

    ports.load([other])

    assert [p.element_id for p in ports.all()] == [other.element_id]
