"""Tests for the Neutron networking-sfc backend against a fake Neutron API."""

import itertools
import json

import httpx
import pytest

from sdnredirect.config import RedirectConfig
from sdnredirect.redirection import (
    BackendFailure,
    FailurePolicyType,
    InspectionPortElement,
    NetworkElement,
    PortNotFoundError,
    RedirectionController,
    TagEncapsulationType,
    UnsupportedCapabilityError,
)
from sdnredirect.redirection.backends import NeutronSFCBackend, get_backend

MPLS = TagEncapsulationType.MPLS
NA = FailurePolicyType.NA

DEFAULTS = {
    "port_pairs": {"description": ""},
    "port_pair_groups": {"port_pairs": []},
    "flow_classifiers": {},
    "port_chains": {
        "description": "",
        "flow_classifiers": [],
        "chain_parameters": {"correlation": "mpls", "symmetric": False},
    },
}


class FakeNeutron:
    """Minimal in-process Neutron with the SFC extension."""

    def __init__(self, ports: list[str]):
        self.ports = {
            port_id: {
                "id": port_id,
                "mac_address": f"fa:16:3e:00:00:{index:02x}",
                "fixed_ips": [{"ip_address": f"10.0.0.{index}"}],
            }
            for index, port_id in enumerate(ports, start=1)
        }
        self.port_pairs: dict[str, dict] = {}
        self.port_pair_groups: dict[str, dict] = {}
        self.flow_classifiers: dict[str, dict] = {}
        self.port_chains: dict[str, dict] = {}
        self.fail: set[tuple[str, str]] = set()
        self.requests: list[httpx.Request] = []
        self._ids = itertools.count(1)

    @staticmethod
    def _not_found() -> httpx.Response:
        return httpx.Response(404, json={"NeutronError": {"type": "NotFound", "message": "not found"}})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")

        if parts[1] == "ports":
            port = self.ports.get(parts[2])
            return httpx.Response(200, json={"port": port}) if port else self._not_found()

        collection = parts[2]
        item_id = parts[3] if len(parts) > 3 else None
        singular = collection[:-1]
        if (request.method, collection) in self.fail:
            return httpx.Response(409, json={"NeutronError": {"type": "Conflict", "message": "rejected"}})

        store = getattr(self, collection)
        if item_id is None:
            if request.method == "POST":
                body = json.loads(request.content)[singular]
                item = {**DEFAULTS[collection], **body, "id": f"{singular}-{next(self._ids)}"}
                store[item["id"]] = item
                return httpx.Response(201, json={singular: item})
            items = list(store.values())
            for key, value in request.url.params.items():
                if key != "fields":
                    items = [i for i in items if i.get(key) == value]
            return httpx.Response(200, json={collection: items})

        item = store.get(item_id)
        if item is None:
            return self._not_found()
        if request.method == "PUT":
            item.update(json.loads(request.content)[singular])
        elif request.method == "DELETE":
            del store[item_id]
            return httpx.Response(204)
        return httpx.Response(200, json={singular: item})


@pytest.fixture
def neutron() -> FakeNeutron:
    return FakeNeutron(ports=["vm-1", "vm-2", "fw-in", "fw-out", "fw2-in", "fw2-out"])


def _backend(neutron: FakeNeutron) -> NeutronSFCBackend:
    return NeutronSFCBackend(
        "http://neutron:9696/",
        auth_token="secret",
        transport=httpx.MockTransport(neutron),
    )


@pytest.fixture
def sfc(neutron):
    with RedirectionController(_backend(neutron)) as controller:
        yield controller


def _el(element_id: str) -> NetworkElement:
    return NetworkElement(element_id=element_id)


def _pair(ingress: str, egress: str) -> InspectionPortElement:
    return InspectionPortElement(ingress_port=_el(ingress), egress_port=_el(egress))


# =============================================================================
# Connection
# =============================================================================

def test_connect_checks_sfc_with_token(neutron, sfc) -> None:
    first = neutron.requests[0]

    assert first.url.path == "/v2.0/sfc/port_chains"
    assert first.headers["X-Auth-Token"] == "secret"
    assert sfc.backend.connected


def test_connect_failure_is_backend_failure(neutron) -> None:
    neutron.fail.add(("GET", "port_chains"))
    backend = _backend(neutron)

    with pytest.raises(BackendFailure, match="409"):
        RedirectionController(backend)

    assert not backend.connected


def test_transport_errors_become_backend_failures() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = NeutronSFCBackend("http://neutron:9696", transport=httpx.MockTransport(refuse))

    with pytest.raises(BackendFailure) as exc_info:
        backend.connect()

    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


def test_get_backend_builds_sfc_driver_from_config() -> None:
    config = RedirectConfig(auth_token="tok", timeout=5.0, verify_tls=False)

    backend = get_backend("https://neutron.example:9696", config)

    assert isinstance(backend, NeutronSFCBackend)
    assert backend.auth_token == "tok"
    assert backend.timeout == 5.0
    assert not backend.verify_tls


# =============================================================================
# Ports and elements
# =============================================================================

def test_register_port_creates_pair_and_group(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))

    assert port.element_id in neutron.port_pairs
    assert neutron.port_pair_groups[port.parent_id]["port_pairs"] == [port.element_id]

    again = sfc.backend.create_port(_pair("fw-in", "fw-out"))
    assert again.element_id == port.element_id
    assert again.parent_id == port.parent_id
    assert len(neutron.port_pairs) == 1


def test_register_port_with_unknown_neutron_port(sfc) -> None:
    with pytest.raises(PortNotFoundError):
        sfc.register_inspection_port(_pair("fw-in", "ghost"))


def test_group_failure_removes_new_pair(neutron, sfc) -> None:
    neutron.fail.add(("POST", "port_pair_groups"))

    with pytest.raises(BackendFailure):
        sfc.register_inspection_port(_pair("fw-in", "fw-out"))

    assert neutron.port_pairs == {}


def test_remove_port_deletes_group_and_pair(neutron, sfc) -> None:
    sfc.register_inspection_port(_pair("fw-in", "fw-out"))

    sfc.remove_inspection_port(_pair("fw-in", "fw-out"))
    sfc.remove_inspection_port(_pair("fw-in", "fw-out"))

    assert neutron.port_pairs == {}
    assert neutron.port_pair_groups == {}


def test_composite_element_is_port_chain(neutron, sfc) -> None:
    first = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    second = sfc.register_inspection_port(_pair("fw2-in", "fw2-out"))

    chain = sfc.register_network_element([_el(first.parent_id), _el(second.parent_id)])

    assert neutron.port_chains[chain.element_id]["port_pair_groups"] == [
        first.parent_id, second.parent_id,
    ]
    assert [e.element_id for e in sfc.get_network_elements(chain)] == [
        first.parent_id, second.parent_id,
    ]

    sfc.update_network_element(chain, [_el(second.parent_id)])
    assert neutron.port_chains[chain.element_id]["port_pair_groups"] == [second.parent_id]

    sfc.delete_network_element(chain)
    sfc.delete_network_element(chain)
    assert sfc.get_network_elements(chain) is None


def test_neutron_port_resolves_as_leaf(sfc) -> None:
    element = sfc.backend.get_element("vm-1")

    assert element.children == []
    assert element.mac_addresses == ["fa:16:3e:00:00:01"]
    assert element.port_ips == ["10.0.0.1"]


def test_plain_chains_are_not_hooks(sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    sfc.register_network_element([_el(port.parent_id)])

    assert sfc.backend.list_hooks() == []


# =============================================================================
# Hooks
# =============================================================================

def _install(sfc, port, ids=("vm-1", "vm-2"), **kwargs) -> str:
    return sfc.install_inspection_hook(
        [_el(i) for i in ids],
        port,
        kwargs.get("tag", 7),
        kwargs.get("encapsulation_type", MPLS),
        kwargs.get("order", 2),
        kwargs.get("failure_policy", NA),
    )


def test_install_hook_programs_port_chain(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))

    hook_id = _install(sfc, port)

    chain = neutron.port_chains[hook_id]
    assert chain["port_pair_groups"] == [port.parent_id]
    assert chain["chain_parameters"]["correlation"] == "mpls"
    sources = {neutron.flow_classifiers[c]["logical_source_port"] for c in chain["flow_classifiers"]}
    assert sources == {"vm-1", "vm-2"}


def test_installed_hook_reads_back_from_neutron(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    hook_id = _install(sfc, port, tag=42, order=3)

    with RedirectionController(_backend(neutron), reconcile=True) as fresh:
        hook = fresh.get_inspection_hook(hook_id)
        by_pair = fresh.get_inspection_hook_for(_el("vm-2"), _pair("fw-in", "fw-out"))

    assert hook.hook_id == hook_id
    assert (hook.tag, hook.order) == (42, 3)
    assert hook.encapsulation_type == MPLS
    assert hook.inspected_ids == {"vm-1", "vm-2"}
    assert by_pair.hook_id == hook_id


@pytest.mark.parametrize("kwargs", [
    {"encapsulation_type": TagEncapsulationType.VLAN},
    {"failure_policy": FailurePolicyType.FAIL_OPEN},
])
def test_unsupported_values_are_rejected_before_programming(neutron, sfc, kwargs) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))

    with pytest.raises(UnsupportedCapabilityError):
        _install(sfc, port, **kwargs)

    assert neutron.flow_classifiers == {}


def test_chain_failure_rolls_back_classifiers(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    neutron.fail.add(("POST", "port_chains"))

    with pytest.raises(BackendFailure):
        _install(sfc, port)

    assert neutron.flow_classifiers == {}


def test_setters_rewrite_chain_description(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    hook_id = _install(sfc, port)

    sfc.set_inspection_hook_tag(_el("vm-1"), port, 99)
    sfc.set_inspection_hook_order(_el("vm-1"), port, 5)

    meta = json.loads(neutron.port_chains[hook_id]["description"])
    assert (meta["tag"], meta["order"]) == (99, 5)

    with RedirectionController(_backend(neutron), reconcile=True) as fresh:
        assert fresh.get_inspection_hook_tag(_el("vm-2"), _pair("fw-in", "fw-out")) == 99


def test_update_cannot_change_correlation(sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    hook_id = _install(sfc, port)
    snapshot = sfc.get_inspection_hook(hook_id)
    snapshot.encapsulation_type = TagEncapsulationType.NSH

    with pytest.raises(BackendFailure, match="correlation"):
        sfc.update_inspection_hook(snapshot)


def test_remove_hook_deletes_chain_and_classifiers(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    hook_id = _install(sfc, port)

    sfc.remove_inspection_hook_by_id(hook_id)
    sfc.remove_inspection_hook_by_id(hook_id)

    assert neutron.port_chains == {}
    assert neutron.flow_classifiers == {}
    assert sfc.backend.delete_hook(hook_id) is False


def test_hook_chain_cannot_be_deleted_as_element(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    hook_id = _install(sfc, port)

    with pytest.raises(BackendFailure, match="inspection hook"):
        sfc.delete_network_element(_el(hook_id))
    with pytest.raises(BackendFailure, match="inspection hook"):
        sfc.backend.delete_element(hook_id)

    assert hook_id in neutron.port_chains
    assert len(neutron.flow_classifiers) == 2
    assert sfc.get_inspection_hook(hook_id) is not None


def test_neutron_port_delete_keeps_hooks(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    hook_id = _install(sfc, port)

    with pytest.raises(BackendFailure, match="not a port chain"):
        sfc.delete_network_element(_el("vm-1"))

    assert hook_id in neutron.port_chains


def test_port_in_composite_chain_keeps_hooks_on_removal(neutron, sfc) -> None:
    port = sfc.register_inspection_port(_pair("fw-in", "fw-out"))
    chain = sfc.register_network_element([_el(port.parent_id)])
    hook_id = _install(sfc, port)

    with pytest.raises(BackendFailure, match=chain.element_id):
        sfc.remove_inspection_port(_pair("fw-in", "fw-out"))

    assert hook_id in neutron.port_chains
    assert port.element_id in neutron.port_pairs

    sfc.delete_network_element(chain)
    sfc.remove_inspection_port(_pair("fw-in", "fw-out"))

    assert neutron.port_chains == {}
    assert neutron.port_pairs == {}
