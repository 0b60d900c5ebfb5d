"""Tests for the SQLite lab controller backend."""

from pathlib import Path

import pytest

from sdnredirect.redirection import (
    BackendFailure,
    FailurePolicyType,
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
    PortNotFoundError,
    RedirectionController,
    TagEncapsulationType,
)
from sdnredirect.redirection.backends import SQLiteBackend, get_backend


def _el(element_id: str) -> NetworkElement:
    return NetworkElement(element_id=element_id)


def _port(port_id: str) -> InspectionPortElement:
    return InspectionPortElement.single(_el(port_id))


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "lab" / "redirect.db")


@pytest.fixture
def sqlite_backend(db_path):
    backend = SQLiteBackend(db_path)
    backend.connect()
    for port_id in ("p1", "p2", "p3", "p4"):
        backend.provision_port(_el(port_id))
    yield backend
    backend.close()


def test_connect_creates_database(db_path) -> None:
    backend = SQLiteBackend(db_path)
    backend.connect()
    backend.close()

    assert Path(db_path).exists()


def test_calls_before_connect_fail(db_path) -> None:
    backend = SQLiteBackend(db_path)

    with pytest.raises(BackendFailure, match="not connected"):
        backend.list_hooks()


def test_provisioned_port_keeps_addresses(sqlite_backend) -> None:
    sqlite_backend.provision_port(
        NetworkElement(element_id="vm-1", mac_addresses=["FA:16:3E:00:00:01"], port_ips=["10.0.0.5"])
    )

    found = sqlite_backend.get_element("vm-1")

    assert found.mac_addresses == ["fa:16:3e:00:00:01"]
    assert found.port_ips == ["10.0.0.5"]


def test_element_composition(sqlite_backend) -> None:
    composite = sqlite_backend.create_element([_el("p2"), _el("p1")])

    assert sqlite_backend.get_element(composite.element_id).children == ["p2", "p1"]

    updated = sqlite_backend.update_element(composite.element_id, [_el("p3")])
    assert updated.children == ["p3"]
    assert sqlite_backend.update_element("missing", [_el("p3")]) is None

    assert sqlite_backend.delete_element(composite.element_id)
    assert not sqlite_backend.delete_element(composite.element_id)


def test_composition_errors(sqlite_backend) -> None:
    inner = sqlite_backend.create_element([_el("p1")])
    outer = sqlite_backend.create_element([inner])

    with pytest.raises(BackendFailure, match="duplicate"):
        sqlite_backend.create_element([_el("p1"), _el("p1")])
    with pytest.raises(BackendFailure, match="cyclic"):
        sqlite_backend.update_element(inner.element_id, [outer])
    with pytest.raises(BackendFailure, match="leaf"):
        sqlite_backend.update_element("p1", [_el("p2")])
    with pytest.raises(BackendFailure, match="child"):
        sqlite_backend.delete_element(inner.element_id)


def test_port_pair_is_unique(sqlite_backend) -> None:
    first = sqlite_backend.create_port(_port("p3"))
    second = sqlite_backend.create_port(_port("p3"))

    assert first.element_id == second.element_id
    assert len(sqlite_backend.list_ports()) == 1

    with pytest.raises(PortNotFoundError):
        sqlite_backend.create_port(_port("ghost"))


def test_hook_lifecycle(sqlite_backend) -> None:
    port = sqlite_backend.create_port(_port("p3"))
    hook = InspectionHookElement(
        inspected_elements=[_el("p1"), _el("p2")],
        inspection_port=port,
        tag=42,
        encapsulation_type=TagEncapsulationType.VXLAN,
        order=1,
        failure_policy=FailurePolicyType.FAIL_OPEN,
    )

    hook_id = sqlite_backend.create_hook(hook)
    stored = sqlite_backend.get_hook(hook_id)
    assert stored.inspected_ids == {"p1", "p2"}
    assert stored.encapsulation_type == TagEncapsulationType.VXLAN

    stored.tag = 7
    sqlite_backend.update_hook(stored)
    assert sqlite_backend.get_hook(hook_id).tag == 7

    with pytest.raises(BackendFailure, match="used by hook"):
        sqlite_backend.delete_port(port.element_id)
    with pytest.raises(BackendFailure, match="inspected by hook"):
        sqlite_backend.delete_element("p1")

    assert sqlite_backend.delete_hook(hook_id)
    assert not sqlite_backend.delete_hook(hook_id)
    assert sqlite_backend.get_hook(hook_id) is None
    assert sqlite_backend.delete_port(port.element_id)


def test_hook_on_unknown_port_is_rejected(sqlite_backend) -> None:
    port = InspectionPortElement(_el("p3"), _el("p3"), element_id="nope")
    hook = InspectionHookElement(inspected_elements=[_el("p1")], inspection_port=port)

    with pytest.raises(PortNotFoundError):
        sqlite_backend.create_hook(hook)


def test_state_survives_reopen(db_path, sqlite_backend) -> None:
    with RedirectionController(sqlite_backend) as controller:
        c1 = controller.register_network_element([_el("p1"), _el("p2")])
        hook_id = controller.install_redirection(
            [c1], _el("p3"), _el("p4"), 42, TagEncapsulationType.VXLAN, 1, FailurePolicyType.FAIL_OPEN
        )

    with RedirectionController(SQLiteBackend(db_path), reconcile=True) as controller:
        hook = controller.get_inspection_hook(hook_id)
        port = InspectionPortElement(_el("p3"), _el("p4"))

        assert hook.tag == 42
        assert controller.get_inspection_hook_for(c1, port).hook_id == hook_id
        assert [e.element_id for e in controller.get_network_elements(c1)] == ["p1", "p2"]


def test_child_delete_is_refused_before_hooks_go(sqlite_backend) -> None:
    with RedirectionController(sqlite_backend) as controller:
        controller.register_network_element([_el("p1"), _el("p2")])
        hook_id = controller.install_redirection(
            [_el("p1")], _el("p3"), _el("p3"), 5, TagEncapsulationType.VLAN, 0, FailurePolicyType.NA
        )

        with pytest.raises(BackendFailure, match="child of"):
            sqlite_backend.check_delete_element("p1")
        with pytest.raises(BackendFailure, match="child of"):
            controller.delete_network_element(_el("p1"))

        assert sqlite_backend.get_hook(hook_id) is not None
        sqlite_backend.check_delete_element("p4")


def test_get_backend_parses_sqlite_url(db_path) -> None:
    backend = get_backend(f"sqlite:///{db_path}")

    assert isinstance(backend, SQLiteBackend)
    assert backend.db_path == db_path
