"""
Data models for traffic redirection.

Provides dataclass-based models for network elements, inspection ports
and inspection hooks, plus the tag encapsulation and failure policy
enumerations shared by all controller backends.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from netaddr import EUI, IPAddress, AddrFormatError, mac_unix_expanded


# =============================================================================
# Enumerations
# =============================================================================

class TagEncapsulationType(str, Enum):
    """How the policy tag is carried in redirected traffic.

    Backends support a subset; see RedirectionBackend.SUPPORTED_ENCAPSULATIONS.
    """
    VLAN = "vlan"
    VXLAN = "vxlan"
    MPLS = "mpls"
    NSH = "nsh"


class FailurePolicyType(str, Enum):
    """Behavior when the inspection device is unreachable."""
    FAIL_OPEN = "fail_open"  # Pass traffic uninspected
    FAIL_CLOSE = "fail_close"  # Drop traffic
    NA = "na"  # Not applicable / backend default


# =============================================================================
# Validation helpers
# =============================================================================

def normalize_mac(value: str) -> str:
    """Return a MAC address in lowercase colon-separated form."""
    try:
        mac = EUI(value)
    except (AddrFormatError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid MAC address: {value!r}") from exc
    mac.dialect = mac_unix_expanded
    return str(mac)


def normalize_ip(value: str) -> str:
    """Return an IPv4/IPv6 address in canonical form."""
    try:
        return str(IPAddress(value))
    except (AddrFormatError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid IP address: {value!r}") from exc


def check_non_negative(name: str, value: Any) -> int:
    """Validate an integer field such as tag or order."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value


# =============================================================================
# Network Element
# =============================================================================

@dataclass
class NetworkElement:
    """Addressable network endpoint or composite of endpoints.

    For composites, `children` holds the ordered child element ids; the
    order encodes the traffic path (e.g. port pair groups of a chain).
    """
    element_id: str
    children: list[str] = field(default_factory=list)
    parent_id: str | None = None
    mac_addresses: list[str] = field(default_factory=list)
    port_ips: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.element_id:
            raise ValueError("element_id is required")
        self.children = list(self.children)
        self.mac_addresses = [normalize_mac(m) for m in self.mac_addresses]
        self.port_ips = [normalize_ip(ip) for ip in self.port_ips]

    @property
    def is_composite(self) -> bool:
        return bool(self.children)

    def with_children(self, children: list[str]) -> "NetworkElement":
        """Return a copy with the child sequence replaced."""
        return replace(self, children=list(children))

    def to_dict(self) -> dict[str, Any]:
        return {
            "element_id": self.element_id,
            "children": list(self.children),
            "parent_id": self.parent_id,
            "mac_addresses": list(self.mac_addresses),
            "port_ips": list(self.port_ips),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NetworkElement":
        return cls(
            element_id=data["element_id"],
            children=data.get("children", []),
            parent_id=data.get("parent_id"),
            mac_addresses=data.get("mac_addresses", []),
            port_ips=data.get("port_ips", []),
        )


# =============================================================================
# Inspection Port
# =============================================================================

@dataclass
class InspectionPortElement:
    """Directed (ingress, egress) pair through an inspection device.

    If traffic enters and exits the device on the same port, ingress and
    egress reference the same element.
    """
    ingress_port: NetworkElement
    egress_port: NetworkElement
    element_id: str | None = None  # Assigned by the backend on registration
    parent_id: str | None = None  # Backend grouping, e.g. SFC port pair group

    @classmethod
    def single(cls, port: NetworkElement) -> "InspectionPortElement":
        """Port where traffic enters and exits the same point."""
        return cls(ingress_port=port, egress_port=port)

    @property
    def pair_key(self) -> tuple[str, str]:
        """Identity of the port, derived from the ingress/egress pair."""
        return (self.ingress_port.element_id, self.egress_port.element_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "element_id": self.element_id,
            "parent_id": self.parent_id,
            "ingress_port": self.ingress_port.to_dict(),
            "egress_port": self.egress_port.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InspectionPortElement":
        return cls(
            ingress_port=NetworkElement.from_dict(data["ingress_port"]),
            egress_port=NetworkElement.from_dict(data["egress_port"]),
            element_id=data.get("element_id"),
            parent_id=data.get("parent_id"),
        )


# =============================================================================
# Inspection Hook
# =============================================================================

@dataclass
class InspectionHookElement:
    """Binding of inspected network elements to one inspection port.

    A hook is addressed either by `hook_id` or by the pair
    (inspected element, inspection port); both resolve to the same record.
    """
    inspected_elements: list[NetworkElement]
    inspection_port: InspectionPortElement
    tag: int = 0
    encapsulation_type: TagEncapsulationType = TagEncapsulationType.VLAN
    order: int = 0
    failure_policy: FailurePolicyType = FailurePolicyType.NA
    hook_id: str | None = None

    def __post_init__(self):
        if not self.inspected_elements:
            raise ValueError("an inspection hook needs at least one inspected element")
        self.inspected_elements = list(self.inspected_elements)
        check_non_negative("tag", self.tag)
        check_non_negative("order", self.order)
        self.encapsulation_type = TagEncapsulationType(self.encapsulation_type)
        self.failure_policy = FailurePolicyType(self.failure_policy)

    @property
    def inspected_ids(self) -> frozenset[str]:
        return frozenset(e.element_id for e in self.inspected_elements)

    @property
    def binding_key(self) -> tuple[frozenset[str], tuple[str, str]]:
        """Immutable identity: (inspected-element set, inspection port pair)."""
        return (self.inspected_ids, self.inspection_port.pair_key)

    def inspects(self, element_id: str) -> bool:
        return element_id in self.inspected_ids

    def same_settings(self, other: "InspectionHookElement") -> bool:
        """True if tag, encapsulation, order and failure policy all match."""
        return (
            self.tag == other.tag
            and self.encapsulation_type == other.encapsulation_type
            and self.order == other.order
            and self.failure_policy == other.failure_policy
        )

    def copy(self) -> "InspectionHookElement":
        return replace(self, inspected_elements=list(self.inspected_elements))

    def to_dict(self) -> dict[str, Any]:
        return {
            "hook_id": self.hook_id,
            "inspected_elements": [e.to_dict() for e in self.inspected_elements],
            "inspection_port": self.inspection_port.to_dict(),
            "tag": self.tag,
            "encapsulation_type": self.encapsulation_type.value,
            "order": self.order,
            "failure_policy": self.failure_policy.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InspectionHookElement":
        return cls(
            inspected_elements=[
                NetworkElement.from_dict(e) for e in data["inspected_elements"]
            ],
            inspection_port=InspectionPortElement.from_dict(data["inspection_port"]),
            tag=data.get("tag", 0),
            encapsulation_type=TagEncapsulationType(data.get("encapsulation_type", "vlan")),
            order=data.get("order", 0),
            failure_policy=FailurePolicyType(data.get("failure_policy", "na")),
            hook_id=data.get("hook_id"),
        )
